"""Conversational pipeline: everything that happens before the first byte.

Stages run strictly in order and each may suspend on I/O:

1. Resolve the client by slug.
2. Resolve or create the conversation.
3. Persist the user message (before any model call).
4. Load recent history.
5. Rewrite follow-ups into a standalone search query.
6. Retrieve archive passages.
7. Assemble the generation request.

Any failure here raises a ``LibraryError`` (or an unexpected exception) so
the server can still answer synchronously.  Streaming is handed off to a
``StreamingOrchestrator``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from living_library.chat.context import KnowledgeDocument, build_generation_request
from living_library.chat.orchestrator import (
    PreparedTurn,
    StreamingOrchestrator,
    StreamOpener,
)
from living_library.chat.rewriter import QueryRewriter
from living_library.config import settings
from living_library.errors import BadRequest
from living_library.llm.client import open_generation_stream

if TYPE_CHECKING:
    from living_library.archive.retrieval import Retriever
    from living_library.store.messages import MessageStore

logger = logging.getLogger(__name__)


def _optional_str(value: object, name: str) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise BadRequest(f"{name} must be a string")
    return value


class ChatPipeline:
    """Wires the store, rewriter, retriever, and generator for one persona set."""

    def __init__(
        self,
        store: MessageStore,
        retriever: Retriever,
        knowledge: KnowledgeDocument,
        rewriter: QueryRewriter | None = None,
        open_stream: StreamOpener = open_generation_stream,
        *,
        default_client_slug: str | None = None,
        history_limit: int | None = None,
    ) -> None:
        self.store = store
        self.retriever = retriever
        self.knowledge = knowledge
        self.rewriter = rewriter or QueryRewriter()
        self._open_stream = open_stream
        self.default_client_slug = default_client_slug or settings.default_client_slug
        self.history_limit = history_limit if history_limit is not None else settings.history_limit

    async def prepare(
        self,
        message: object,
        client_slug: object = None,
        conversation_id: object = None,
    ) -> PreparedTurn:
        """Run every pre-stream stage and return the ready-to-generate turn."""
        if not isinstance(message, str) or not message.strip():
            raise BadRequest("message is required")
        slug = _optional_str(client_slug, "client_slug") or self.default_client_slug
        requested_conversation = _optional_str(conversation_id, "conversation_id")

        client = await self.store.resolve_client(slug)
        conversation = await self.store.resolve_or_create_conversation(
            requested_conversation, client.id
        )

        user_message = await self.store.append_message(
            conversation.id, client.id, "user", message
        )

        history = await self.store.load_history(conversation.id, limit=self.history_limit)
        search_query = await self.rewriter.rewrite(message, history)
        retrieval = await self.retriever.retrieve(search_query, client.id)

        prior = [m for m in history if m.id != user_message.id]
        request = build_generation_request(
            self.knowledge.for_client(client), prior, message, retrieval.passages
        )
        logger.info(
            "Prepared turn: client=%s conversation=%s new=%s history=%d passages=%d",
            client.slug,
            conversation.id,
            conversation.is_new,
            len(prior),
            len(retrieval),
        )
        return PreparedTurn(
            client=client,
            conversation=conversation,
            message=message,
            search_query=search_query,
            retrieval=retrieval,
            request=request,
        )

    async def start_stream(self, turn: PreparedTurn) -> StreamingOrchestrator:
        """Open the generation stream for *turn*. Raises GenerationError on failure."""
        orchestrator = StreamingOrchestrator(turn, self.store, self._open_stream)
        await orchestrator.start()
        return orchestrator
