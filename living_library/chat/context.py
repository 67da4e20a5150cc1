"""Generation request assembly: knowledge document, history, retrieved passages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from living_library.llm.client import GenerationRequest

if TYPE_CHECKING:
    from collections.abc import Sequence

    from living_library.archive.models import Passage
    from living_library.store.models import Client, Message

logger = logging.getLogger(__name__)

PASSAGE_DIVIDER = "\n\n---\n\n"

SUPPLEMENT_INSTRUCTION = (
    "Use the knowledge document above as your primary reference. The additional "
    "context chunks may contain specific quotes or details — use them to supplement "
    "your answers when relevant."
)


@dataclass(frozen=True)
class KnowledgeDocument:
    """The curated persona/knowledge text sent as the system prompt."""

    text: str
    source: str = "<inline>"

    @classmethod
    def load(cls, path: Path) -> KnowledgeDocument:
        """Read the document from disk. Raises FileNotFoundError if missing."""
        text = Path(path).read_text(encoding="utf-8")
        logger.info("Loaded knowledge document %s (%d chars)", path, len(text))
        return cls(text=text, source=str(path))

    def for_client(self, client: Client) -> str:
        """System prompt for *client*: its persona override, or this document."""
        if client.persona_prompt and client.persona_prompt.strip():
            return client.persona_prompt
        return self.text


def format_passages(passages: Sequence[Passage]) -> str:
    """Render passages as numbered, attributed blocks separated by dividers."""
    blocks = [
        f'[Source {i}: "{p.source_title}" ({p.kind}, {p.year})]\n{p.text}'
        for i, p in enumerate(passages, start=1)
    ]
    return PASSAGE_DIVIDER.join(blocks)


def augment_message(message: str, passages: Sequence[Passage]) -> str:
    """Append the supplementary archive block to *message* if there are passages."""
    if not passages:
        return message
    return (
        f"{message}\n\nADDITIONAL CONTEXT FROM CONTENT ARCHIVE:\n"
        f"<retrieved_context>\n{format_passages(passages)}\n</retrieved_context>\n\n"
        f"{SUPPLEMENT_INSTRUCTION}"
    )


def build_generation_request(
    system: str,
    prior: Sequence[Message],
    message: str,
    passages: Sequence[Passage],
) -> GenerationRequest:
    """Assemble the generation input.

    Args:
        system: Knowledge document text for this client.
        prior: Earlier turns in chronological order, excluding the current one.
        message: The user's verbatim message.
        passages: Retrieved archive passages, possibly empty.
    """
    messages = [m.to_api() for m in prior]
    # The Messages API expects the first turn to come from the user.
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    messages.append({"role": "user", "content": augment_message(message, passages)})
    return GenerationRequest(system=system, messages=messages)
