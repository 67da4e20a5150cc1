"""Streaming orchestration: upstream token stream → outbound event stream.

State machine::

    INIT ──start()──▶ STREAMING ──▶ COMPLETED
      │                   │
      └──▶ FAILED ◀───────┘

Failures in INIT raise (the caller can still answer with an HTTP error).
Once STREAMING, every failure becomes a single in-band ``error`` event.
"""

from __future__ import annotations

import contextlib
import enum
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from living_library.llm.client import GenerationRequest, open_generation_stream
from living_library.llm.sse import ServerEvent

if TYPE_CHECKING:
    from living_library.archive.models import RetrievalResult
    from living_library.store.messages import MessageStore
    from living_library.store.models import Client, Conversation

logger = logging.getLogger(__name__)

StreamOpener = Callable[[GenerationRequest], AbstractAsyncContextManager[AsyncIterator[str]]]


class StreamState(enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PreparedTurn:
    """Everything resolved before generation starts."""

    client: Client
    conversation: Conversation
    message: str
    search_query: str
    retrieval: RetrievalResult
    request: GenerationRequest


class StreamingOrchestrator:
    """Drives one generation call and relays it as outbound events.

    Usage::

        orchestrator = StreamingOrchestrator(turn, store)
        await orchestrator.start()          # may raise GenerationError
        try:
            async for event in orchestrator.events():
                ...
        finally:
            await orchestrator.aclose()
    """

    def __init__(
        self,
        turn: PreparedTurn,
        store: MessageStore,
        open_stream: StreamOpener = open_generation_stream,
    ) -> None:
        self.turn = turn
        self.state = StreamState.INIT
        self._store = store
        self._open_stream = open_stream
        self._stack = contextlib.AsyncExitStack()
        self._fragments: AsyncIterator[str] | None = None
        self._parts: list[str] = []

    @property
    def answer(self) -> str:
        """Text accumulated so far."""
        return "".join(self._parts)

    async def start(self) -> None:
        """Open the upstream generation stream."""
        if self.state is not StreamState.INIT:
            raise RuntimeError(f"Cannot start from state {self.state.value}")
        try:
            self._fragments = await self._stack.enter_async_context(
                self._open_stream(self.turn.request)
            )
        except BaseException:
            self.state = StreamState.FAILED
            await self._stack.aclose()
            raise
        self.state = StreamState.STREAMING

    async def events(self) -> AsyncIterator[ServerEvent]:
        """Yield delta events, then sources + done, or a single error event."""
        if self.state is not StreamState.STREAMING or self._fragments is None:
            raise RuntimeError("Stream has not been started")

        conversation_id = self.turn.conversation.id
        try:
            async for text in self._fragments:
                self._parts.append(text)
                yield ServerEvent.delta(text)
            await self._persist_answer()
        except Exception as exc:
            self.state = StreamState.FAILED
            logger.exception(
                "Stream failed for conversation %s after %d chars",
                conversation_id,
                len(self.answer),
            )
            yield ServerEvent.error(str(exc) or exc.__class__.__name__)
            return

        self.state = StreamState.COMPLETED
        sources = [s.model_dump() for s in self.turn.retrieval.sources()]
        yield ServerEvent.sources(sources, conversation_id)
        yield ServerEvent.done()

    async def aclose(self) -> None:
        """Release the upstream connection. Safe to call more than once."""
        if self.state is StreamState.STREAMING:
            logger.info(
                "Stream for conversation %s closed before completion",
                self.turn.conversation.id,
            )
            self.state = StreamState.FAILED
        await self._stack.aclose()

    async def _persist_answer(self) -> None:
        answer = self.answer
        conversation = self.turn.conversation
        if not answer:
            logger.warning("Empty answer for conversation %s; nothing stored", conversation.id)
            return

        await self._store.append_message(
            conversation.id, self.turn.client.id, "assistant", answer
        )
        await self._store.touch_conversation(conversation.id)
        logger.info(
            "Completed answer for conversation %s (%d chars, %d sources)",
            conversation.id,
            len(answer),
            len(self.turn.retrieval),
        )
