"""Follow-up detection and standalone search-query rewriting.

Short, context-dependent follow-ups ("tell me more about that") retrieve
poorly on their own.  When one is detected, a small model call rewrites it
into a standalone search query.  The rewrite only ever changes the search
query; the stored and generated user message stays verbatim.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from living_library.config import settings
from living_library.llm.client import complete_text
from living_library.store.models import Message

logger = logging.getLogger(__name__)

REWRITE_SYSTEM_PROMPT = (
    "Given the conversation history, rewrite the user's follow-up message as a "
    "standalone search query. Output ONLY the search query, nothing else. "
    "Keep it under 15 words."
)

FOLLOW_UP_CUES = re.compile(
    r"\b(that|this|it|those|these|what you|you just|you said|you mentioned|about that"
    r"|more about|more on|earlier|before|above|tell me more|expand|elaborate"
    r"|go deeper|keep going)\b",
    re.IGNORECASE,
)

MIN_REWRITE_LENGTH = 4

Completer = Callable[..., Awaitable[str]]


class FollowUpDetector(Protocol):
    """Decides whether a message depends on earlier turns."""

    def __call__(self, message: str, history: Sequence[Message]) -> bool: ...


class LexicalFollowUpDetector:
    """Matches short messages against pronoun and continuation cues.

    *history* is the loaded conversation, which already ends with the
    current user turn, so more than one entry means a prior exchange exists.
    """

    def __init__(
        self,
        max_length: int | None = None,
        cues: re.Pattern[str] = FOLLOW_UP_CUES,
    ) -> None:
        self.max_length = max_length if max_length is not None else settings.followup_max_length
        self.cues = cues

    def __call__(self, message: str, history: Sequence[Message]) -> bool:
        if len(history) <= 1:
            return False
        if len(message) >= self.max_length:
            return False
        return bool(self.cues.search(message))


def _clean(output: str) -> str:
    text = output.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


class QueryRewriter:
    """Produces the search query used for retrieval."""

    def __init__(
        self,
        detector: FollowUpDetector | None = None,
        complete: Completer = complete_text,
        *,
        history_turns: int | None = None,
    ) -> None:
        self.detector = detector or LexicalFollowUpDetector()
        self._complete = complete
        self.history_turns = (
            history_turns if history_turns is not None else settings.rewrite_history_turns
        )

    async def rewrite(self, message: str, history: Sequence[Message]) -> str:
        """Return a standalone search query for *message*.

        Non-follow-ups are returned unchanged without a model call.  Any
        failure falls back to the original message.
        """
        if not self.detector(message, history):
            return message

        prior = [m.to_api() for m in history[:-1]][-self.history_turns:]
        while prior and prior[0]["role"] != "user":
            prior.pop(0)
        messages = [
            *prior,
            {
                "role": "user",
                "content": f'Rewrite this as a standalone search query: "{message}"',
            },
        ]

        try:
            output = await self._complete(
                messages,
                system=REWRITE_SYSTEM_PROMPT,
                model=settings.get_rewrite_model(),
                max_tokens=settings.rewrite_max_tokens,
                temperature=0,
                timeout=settings.rewrite_timeout_seconds,
            )
        except Exception:
            logger.warning("Query rewrite failed, using original message", exc_info=True)
            return message

        rewritten = _clean(output or "")
        if len(rewritten) < MIN_REWRITE_LENGTH:
            logger.warning("Query rewrite returned unusable output: %r", output)
            return message

        logger.info("Rewrote follow-up %r -> %r", message, rewritten)
        return rewritten
