"""Query embeddings via the Voyage AI API."""

from __future__ import annotations

import logging

import httpx

from living_library.config import settings
from living_library.errors import UpstreamError

logger = logging.getLogger(__name__)


class EmbeddingError(UpstreamError):
    """The embedding service was unreachable or returned an unusable response."""


async def embed_query(text: str) -> list[float]:
    """Return the dense embedding for a search query.

    Raises EmbeddingError on transport errors, non-2xx responses, or a
    malformed response body.  There is no degraded mode: retrieval cannot
    continue without a query vector.
    """
    payload = {
        "model": settings.voyage_model,
        "input": [text],
        "input_type": "query",
    }
    headers = {"Authorization": f"Bearer {settings.voyage_api_key}"}

    try:
        async with httpx.AsyncClient(timeout=settings.embedding_timeout_seconds) as client:
            resp = await client.post(settings.voyage_api_url, json=payload, headers=headers)
    except httpx.TimeoutException as exc:
        logger.error("Voyage embedding request timed out")
        raise EmbeddingError("Voyage API timed out") from exc
    except httpx.HTTPError as exc:
        logger.error("Voyage embedding request failed: %s", exc)
        raise EmbeddingError(f"Voyage API request failed: {exc}") from exc

    if resp.status_code >= 400:
        logger.error("Voyage API error %d: %s", resp.status_code, resp.text[:200])
        raise EmbeddingError(f"Voyage API error {resp.status_code}: {resp.text}")

    try:
        embedding = resp.json()["data"][0]["embedding"]
        if not isinstance(embedding, list):
            raise TypeError("embedding is not a list")
        vector = [float(x) for x in embedding]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise EmbeddingError("Voyage API returned a malformed response") from exc

    if not vector:
        raise EmbeddingError("Voyage API returned an empty embedding")
    return vector
