"""ArchiveStore — read-only similarity and keyword search over content chunks.

Passages are written by a separate ingestion process.  Embeddings are stored
as JSON arrays; similarity is cosine, computed over the client's passages.
"""

from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING

from living_library.archive.models import Passage
from living_library.db import get_connection
from living_library.errors import UpstreamError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS content_chunks (
        id           TEXT PRIMARY KEY,
        client_id    TEXT NOT NULL,
        chunk_text   TEXT NOT NULL,
        source_title TEXT,
        source_url   TEXT,
        source_type  TEXT,
        published_at TEXT,
        embedding    TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_content_chunks_client
        ON content_chunks (client_id)
    """,
)

_COLUMNS = "id, client_id, chunk_text, source_title, source_url, source_type, published_at"


class RetrievalError(UpstreamError):
    """Vector search over the archive failed."""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _passage_from_row(row: tuple, similarity: float = 0.0) -> Passage:
    return Passage(
        id=row[0],
        client_id=row[1],
        text=row[2],
        source_title=row[3],
        source_url=row[4],
        source_type=row[5],
        published_at=row[6],
        similarity=similarity,
    )


class ArchiveStore:
    """Search facility over the client's embedded content archive.

    Singleton accessed via ``ArchiveStore.get()``.  Pass an explicit *db_path*
    for test isolation.
    """

    _instance: ArchiveStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> ArchiveStore:
        """Return the shared ArchiveStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.executescript(_SCHEMA)
            self._initialised = True
        return db

    async def match_passages(
        self,
        embedding: Sequence[float],
        client_id: str,
        count: int = 5,
        threshold: float = 0.3,
    ) -> list[Passage]:
        """Return up to *count* passages with similarity >= *threshold*, best first.

        Raises RetrievalError on any storage or decoding failure.
        """
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    f"SELECT {_COLUMNS}, embedding FROM content_chunks "
                    "WHERE client_id = ? AND embedding IS NOT NULL",
                    (client_id,),
                )
                rows = await cursor.fetchall()
            finally:
                await db.close()

            scored: list[Passage] = []
            for row in rows:
                score = cosine_similarity(embedding, json.loads(row[7]))
                if score >= threshold:
                    scored.append(_passage_from_row(row, similarity=score))
        except Exception as exc:
            logger.exception("Vector search failed for client %s", client_id)
            raise RetrievalError(f"match_chunks error: {exc}") from exc

        scored.sort(key=lambda p: p.similarity, reverse=True)
        return scored[:count]

    async def keyword_search(
        self, keywords: Sequence[str], client_id: str, limit: int = 5
    ) -> list[Passage]:
        """Case-insensitive substring match, OR-combined across *keywords*.

        Matching uses ``str.casefold`` so non-ASCII text folds the same way
        ASCII does.  Results are in store order with similarity 0.
        """
        terms = [k.casefold() for k in keywords if k]
        if not terms:
            return []

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM content_chunks WHERE client_id = ? ORDER BY rowid",
                (client_id,),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        matches: list[Passage] = []
        for row in rows:
            text = (row[2] or "").casefold()
            if any(term in text for term in terms):
                matches.append(_passage_from_row(row))
                if len(matches) >= limit:
                    break
        return matches
