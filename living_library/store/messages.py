"""MessageStore — clients, conversations, and messages via libsql."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from living_library.db import get_connection
from living_library.errors import NotFound
from living_library.store.models import Client, Conversation, Message, new_id, utc_now

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS clients (
        id             TEXT PRIMARY KEY,
        slug           TEXT NOT NULL UNIQUE,
        name           TEXT NOT NULL,
        persona_prompt TEXT,
        created_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id              TEXT PRIMARY KEY,
        client_id       TEXT NOT NULL REFERENCES clients(id),
        created_at      TEXT NOT NULL,
        last_message_at TEXT,
        message_count   INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        client_id       TEXT NOT NULL REFERENCES clients(id),
        role            TEXT NOT NULL,
        content         TEXT NOT NULL,
        created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation
        ON messages (conversation_id, created_at)
    """,
)


class ClientNotFound(NotFound):
    def __init__(self, slug: str) -> None:
        super().__init__("Client not found")
        self.slug = slug


class ConversationNotFound(NotFound):
    def __init__(self, conversation_id: str) -> None:
        super().__init__("Conversation not found")
        self.conversation_id = conversation_id


class MessageStore:
    """Durable record of clients, conversations, and messages.

    Singleton accessed via ``MessageStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: MessageStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> MessageStore:
        """Return the shared MessageStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.executescript(_SCHEMA)
            self._initialised = True
        return db

    # -- Clients ---------------------------------------------------------------

    async def resolve_client(self, slug: str) -> Client:
        """Look up a client by slug. Raises ClientNotFound if unknown."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, slug, name, persona_prompt, created_at "
                "FROM clients WHERE slug = ?",
                (slug,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            logger.warning("Unknown client slug: %s", slug)
            raise ClientNotFound(slug)
        return Client.from_row(row)

    async def create_client(
        self, slug: str, name: str, persona_prompt: str | None = None
    ) -> Client:
        """Insert a client, or return the existing one with the same slug."""
        try:
            return await self.resolve_client(slug)
        except ClientNotFound:
            pass

        client = Client(
            id=new_id(),
            slug=slug,
            name=name,
            persona_prompt=persona_prompt,
            created_at=utc_now(),
        )
        db = await self._connect()
        try:
            await db.execute(
                "INSERT INTO clients (id, slug, name, persona_prompt, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (client.id, client.slug, client.name, client.persona_prompt, client.created_at),
            )
            await db.commit()
        finally:
            await db.close()
        logger.info("Created client: %s (%s)", client.slug, client.id)
        return client

    # -- Conversations -----------------------------------------------------------

    async def resolve_or_create_conversation(
        self, conversation_id: str | None, client_id: str
    ) -> Conversation:
        """Return the caller's conversation, creating one if no id was supplied.

        A supplied id must exist and belong to *client_id*; otherwise
        ``ConversationNotFound`` is raised.
        """
        if conversation_id:
            conversation = await self.get_conversation(conversation_id)
            if conversation is None or conversation.client_id != client_id:
                logger.warning(
                    "Conversation %s not found for client %s", conversation_id, client_id
                )
                raise ConversationNotFound(conversation_id)
            return conversation

        conversation = Conversation(
            id=new_id(), client_id=client_id, created_at=utc_now(), is_new=True
        )
        db = await self._connect()
        try:
            await db.execute(
                "INSERT INTO conversations (id, client_id, created_at, message_count) "
                "VALUES (?, ?, ?, 0)",
                (conversation.id, conversation.client_id, conversation.created_at),
            )
            await db.commit()
        finally:
            await db.close()
        logger.info("Created conversation %s for client %s", conversation.id, client_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, client_id, created_at, last_message_at, message_count "
                "FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            return Conversation.from_row(row) if row else None
        finally:
            await db.close()

    async def touch_conversation(
        self, conversation_id: str, message_count: int | None = None
    ) -> bool:
        """Record activity on a conversation after an assistant turn.

        Sets ``last_message_at`` to now and ``message_count`` to the given
        value, or to the number of stored messages when omitted.  Failures
        are logged and reported as False, never raised.
        """
        now = utc_now()
        try:
            db = await self._connect()
            try:
                if message_count is None:
                    cursor = await db.execute(
                        """
                        UPDATE conversations
                        SET last_message_at = ?,
                            message_count = (
                                SELECT COUNT(*) FROM messages WHERE conversation_id = ?
                            )
                        WHERE id = ?
                        """,
                        (now, conversation_id, conversation_id),
                    )
                else:
                    cursor = await db.execute(
                        "UPDATE conversations SET last_message_at = ?, message_count = ? "
                        "WHERE id = ?",
                        (now, message_count, conversation_id),
                    )
                await db.commit()
                return cursor.rowcount > 0
            finally:
                await db.close()
        except Exception:
            logger.exception("Failed to update conversation %s", conversation_id)
            return False

    # -- Messages ----------------------------------------------------------------

    async def append_message(
        self, conversation_id: str, client_id: str, role: str, content: str
    ) -> Message:
        """Insert one immutable message. Errors propagate to the caller."""
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role!r}")

        message = Message(
            role=role,
            content=content,
            id=new_id(),
            conversation_id=conversation_id,
            client_id=client_id,
            created_at=utc_now(),
        )
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO messages (id, conversation_id, client_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.conversation_id,
                    message.client_id,
                    message.role,
                    message.content,
                    message.created_at,
                ),
            )
            await db.commit()
        finally:
            await db.close()
        logger.debug("Stored %s message in %s (%d chars)", role, conversation_id, len(content))
        return message

    async def load_history(self, conversation_id: str, limit: int = 40) -> list[Message]:
        """Return the most recent *limit* messages, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, conversation_id, client_id, role, content, created_at
                FROM messages
                WHERE conversation_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [
            Message(
                id=row[0],
                conversation_id=row[1],
                client_id=row[2],
                role=row[3],
                content=row[4],
                created_at=row[5],
            )
            for row in reversed(rows)
        ]
