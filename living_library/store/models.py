"""Client, conversation, and message records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Client:
    """The persona whose published work a conversation is about.

    Attributes:
        id: Unique identifier (UUID hex).
        slug: Stable external key sent by callers (e.g. ``"josh-galt"``).
        name: Display name.
        persona_prompt: Optional system prompt that replaces the default
            knowledge document for this client.
    """

    id: str
    slug: str
    name: str
    persona_prompt: str | None = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: tuple) -> Client:
        return cls(
            id=row[0],
            slug=row[1],
            name=row[2],
            persona_prompt=row[3],
            created_at=row[4],
        )


@dataclass
class Conversation:
    """A thread of turns owned by one client."""

    id: str
    client_id: str
    created_at: str = ""
    last_message_at: str | None = None
    message_count: int = 0
    is_new: bool = False

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            client_id=row[1],
            created_at=row[2],
            last_message_at=row[3],
            message_count=int(row[4] or 0),
        )


@dataclass(frozen=True)
class Message:
    """A single persisted turn."""

    role: str  # "user" or "assistant"
    content: str
    id: str = ""
    conversation_id: str = ""
    client_id: str = ""
    created_at: str = ""

    def to_api(self) -> dict[str, str]:
        """Format for the Claude Messages API."""
        return {"role": self.role, "content": self.content}
