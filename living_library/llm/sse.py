"""Server-Sent Events framing, inbound (Anthropic) and outbound (callers).

Outbound events follow ``event: <type>\\ndata: <payload>\\n\\n`` with four
types: ``delta``, ``sources``, ``error`` and ``done``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class UpstreamStreamError(Exception):
    """The generation stream reported an error after it had started."""


@dataclass(frozen=True)
class ServerEvent:
    """One outbound event."""

    event: str
    data: str

    def encode(self) -> bytes:
        return f"event: {self.event}\ndata: {self.data}\n\n".encode()

    @classmethod
    def delta(cls, text: str) -> ServerEvent:
        return cls("delta", json.dumps({"text": text}))

    @classmethod
    def sources(cls, sources: list[dict[str, Any]], conversation_id: str) -> ServerEvent:
        return cls(
            "sources",
            json.dumps({"sources": sources, "conversation_id": conversation_id}),
        )

    @classmethod
    def error(cls, message: str) -> ServerEvent:
        return cls("error", json.dumps({"error": message}))

    @classmethod
    def done(cls) -> ServerEvent:
        return cls("done", DONE_MARKER)


def parse_data_line(line: str) -> dict[str, Any] | None:
    """Decode one upstream ``data:`` line, or None if it carries no JSON event."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == DONE_MARKER:
        return None
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed upstream frame: %s", payload[:120])
        return None
    return event if isinstance(event, dict) else None


async def iter_text_deltas(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield text fragments from an Anthropic Messages streaming body.

    Malformed frames and non-text events are skipped.  An upstream ``error``
    event raises UpstreamStreamError so the caller never reports success for
    an interrupted answer.
    """
    async for line in lines:
        event = parse_data_line(line)
        if event is None:
            continue

        event_type = event.get("type")
        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                text = delta.get("text")
                if isinstance(text, str) and text:
                    yield text
        elif event_type == "error":
            error = event.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamStreamError(message or "upstream stream error")
        elif event_type == "message_stop":
            return
