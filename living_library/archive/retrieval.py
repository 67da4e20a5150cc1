"""Hybrid retrieval: vector similarity first, keyword matching as a fallback."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable

from living_library.archive.embeddings import embed_query
from living_library.archive.models import RetrievalResult
from living_library.archive.store import ArchiveStore
from living_library.config import settings

logger = logging.getLogger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]

_WORD_RE = re.compile(r"[\w'-]+")
MIN_KEYWORD_LENGTH = 4


def extract_keywords(query: str) -> list[str]:
    """Lowercase words longer than three characters, first occurrence order."""
    seen: set[str] = set()
    keywords: list[str] = []
    for word in _WORD_RE.findall(query.lower()):
        word = word.strip("'-")
        if len(word) < MIN_KEYWORD_LENGTH or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords


class Retriever:
    """Turns a search query into ranked archive passages for one client."""

    def __init__(
        self,
        archive: ArchiveStore | None = None,
        embed: Embedder = embed_query,
        *,
        match_count: int | None = None,
        match_threshold: float | None = None,
        fallback_below: int | None = None,
        keyword_limit: int | None = None,
    ) -> None:
        self._archive = archive if archive is not None else ArchiveStore.get()
        self._embed = embed
        self.match_count = match_count if match_count is not None else settings.match_count
        self.match_threshold = (
            match_threshold if match_threshold is not None else settings.match_threshold
        )
        self.fallback_below = (
            fallback_below if fallback_below is not None else settings.keyword_fallback_below
        )
        self.keyword_limit = keyword_limit if keyword_limit is not None else settings.keyword_limit

    async def retrieve(self, query: str, client_id: str) -> RetrievalResult:
        """Return vector matches, topped up with keyword matches when sparse.

        Embedding and vector-search failures propagate; a keyword fallback
        failure is logged and the vector results are returned alone.
        """
        embedding = await self._embed(query)
        passages = await self._archive.match_passages(
            embedding,
            client_id,
            count=self.match_count,
            threshold=self.match_threshold,
        )
        result = RetrievalResult(query=query, passages=list(passages))

        if len(passages) < self.fallback_below:
            result.keyword_fallback_used = True
            keywords = extract_keywords(query)
            if keywords:
                try:
                    matches = await self._archive.keyword_search(
                        keywords, client_id, limit=self.keyword_limit
                    )
                except Exception:
                    logger.exception("Keyword fallback failed for %r", query)
                    matches = []
                existing = {p.id for p in result.passages}
                result.passages.extend(m for m in matches if m.id not in existing)

        logger.info(
            "Retrieved %d passage(s) (%d vector, fallback=%s) for client %s",
            len(result),
            len(passages),
            result.keyword_fallback_used,
            client_id,
        )
        return result
