"""Async Claude API client: single-shot completions and raw streaming."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anthropic

from living_library.config import settings
from living_library.errors import UpstreamError
from living_library.llm.sse import iter_text_deltas

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


class GenerationError(UpstreamError):
    """The generation call could not be established."""


@dataclass
class GenerationRequest:
    """Exact input to the generation model."""

    system: str
    messages: list[dict[str, str]] = field(default_factory=list)


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.generation_timeout_seconds,
        )
    return _client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 1024,
    temperature: float | None = None,
    timeout: float | None = None,
) -> str:
    """Single-shot Claude call — no streaming.

    Use this for isolated LLM tasks such as follow-up rewriting where the
    full streaming pipeline is not needed.
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.claude_model,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = await client.messages.create(**kwargs)
    return "".join(block.text for block in response.content if block.type == "text")


@contextlib.asynccontextmanager
async def open_generation_stream(
    request: GenerationRequest,
) -> AsyncIterator[AsyncIterator[str]]:
    """Open a streaming generation call and yield its text fragments.

    Entering the context performs the HTTP request; a non-success status,
    connection failure, or timeout raises GenerationError before any
    fragment is produced.  Errors while iterating propagate unchanged.
    Leaving the context releases the upstream connection.
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": settings.claude_model,
        "max_tokens": settings.generation_max_tokens,
        "temperature": settings.generation_temperature,
        "system": request.system,
        "messages": request.messages,
        "stream": True,
    }

    async with contextlib.AsyncExitStack() as stack:
        try:
            response = await stack.enter_async_context(
                client.messages.with_streaming_response.create(**kwargs)
            )
        except anthropic.APIStatusError as exc:
            logger.error("Claude API error %d: %s", exc.status_code, exc.message)
            raise GenerationError(f"Claude API error {exc.status_code}: {exc.message}") from exc
        except anthropic.APIError as exc:
            logger.error("Claude API request failed: %s", exc)
            raise GenerationError(f"Claude API request failed: {exc}") from exc

        logger.debug("Generation stream opened (%d messages)", len(request.messages))
        yield iter_text_deltas(response.iter_lines())
