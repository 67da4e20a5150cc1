"""Async HTTP server exposing the chat pipeline as a Server-Sent Events stream.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.

Routes:
- ``POST /chat``    — ``{message, client_slug?, conversation_id?}`` → SSE stream
- ``OPTIONS /chat`` — CORS preflight
- ``GET /health``   — liveness check
"""

from __future__ import annotations

import contextlib
import hmac
import logging
from typing import Any

from aiohttp import web

from living_library.chat.pipeline import ChatPipeline
from living_library.config import settings
from living_library.errors import LibraryError

logger = logging.getLogger(__name__)

PIPELINE_KEY = web.AppKey("pipeline", ChatPipeline)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def _cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Headers": "authorization, x-api-key, x-client-info, apikey, content-type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=_cors_headers())


def _authorized(request: web.Request) -> bool:
    """Check the static API key, if one is configured."""
    if not settings.api_key:
        return True
    supplied = request.headers.get("X-API-Key", "")
    auth = request.headers.get("Authorization", "")
    if not supplied and auth.lower().startswith("bearer "):
        supplied = auth[7:].strip()
    return hmac.compare_digest(supplied.encode(), settings.api_key.encode())


async def _handle_chat(request: web.Request) -> web.StreamResponse:
    """Run the pipeline, then relay the generation as an event stream."""
    if not _authorized(request):
        logger.warning("Chat rejected: invalid API key from %s", request.remote)
        return _error("unauthorized", 401)

    try:
        body: Any = await request.json()
    except Exception:
        logger.warning("Chat bad request: invalid JSON")
        return _error("invalid JSON", 400)
    if not isinstance(body, dict):
        return _error("message is required", 400)

    pipeline = request.app[PIPELINE_KEY]
    try:
        turn = await pipeline.prepare(
            body.get("message"),
            client_slug=body.get("client_slug"),
            conversation_id=body.get("conversation_id"),
        )
        orchestrator = await pipeline.start_stream(turn)
    except LibraryError as exc:
        logger.warning("Chat failed before streaming (%d): %s", exc.status, exc)
        return _error(str(exc), exc.status)
    except Exception as exc:
        logger.exception("Chat failed before streaming")
        return _error(str(exc) or "internal error", 500)

    response = web.StreamResponse(status=200, headers={**SSE_HEADERS, **_cors_headers()})
    try:
        await response.prepare(request)
        async with contextlib.aclosing(orchestrator.events()) as events:
            async for event in events:
                await response.write(event.encode())
        await response.write_eof()
    except ConnectionResetError:
        logger.info(
            "Client disconnected mid-stream (conversation=%s)", turn.conversation.id
        )
    finally:
        await orchestrator.aclose()
    return response


async def _handle_preflight(request: web.Request) -> web.Response:
    """OPTIONS /chat — CORS preflight."""
    return web.Response(text="ok", headers=_cors_headers())


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"}, headers=_cors_headers())


def _create_web_app(pipeline: ChatPipeline) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[PIPELINE_KEY] = pipeline
    app.router.add_get("/health", _health)
    app.router.add_post("/chat", _handle_chat)
    app.router.add_route("OPTIONS", "/chat", _handle_preflight)
    return app


class ChatServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        pipeline: ChatPipeline,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for chat requests."""
        if not settings.api_key:
            logger.warning("API_KEY empty — /chat accepts unauthenticated requests")

        app = _create_web_app(self.pipeline)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Chat server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Chat server stopped")
