"""Shared test fixtures."""

from __future__ import annotations

import json
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from living_library.archive.store import ArchiveStore
from living_library.llm.sse import iter_text_deltas
from living_library.store.messages import MessageStore


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("living_library.config.settings.turso_database_url", "")


@pytest.fixture
def db_path(tmp_path: Path, _no_turso: None) -> Path:
    return tmp_path / "library.db"


@pytest.fixture
def store(db_path: Path) -> MessageStore:
    """A MessageStore backed by a temp database."""
    return MessageStore(db_path=db_path)


@pytest.fixture
def archive(db_path: Path) -> ArchiveStore:
    """An ArchiveStore sharing the temp database with ``store``."""
    return ArchiveStore(db_path=db_path)


@pytest.fixture
def add_passage(archive: ArchiveStore):
    """Write content chunks the way the ingestion process would."""

    async def _add(
        *,
        client_id: str,
        text: str,
        embedding: list[float] | None,
        title: str = "Untitled",
        url: str | None = None,
        source_type: str | None = "article",
        published_at: str | None = None,
        passage_id: str | None = None,
    ) -> str:
        passage_id = passage_id or uuid.uuid4().hex
        db = await archive._connect()
        try:
            await db.execute(
                """
                INSERT INTO content_chunks
                    (id, client_id, chunk_text, source_title, source_url,
                     source_type, published_at, embedding)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    passage_id,
                    client_id,
                    text,
                    title,
                    url,
                    source_type,
                    published_at,
                    json.dumps(embedding) if embedding is not None else None,
                ),
            )
            await db.commit()
        finally:
            await db.close()
        return passage_id

    return _add


class FakeGeneration:
    """Scripted stand-in for ``open_generation_stream``.

    Yields *fragments* (or the text parsed from raw upstream *lines*), then
    raises *stream_error* if given.  *open_error* is raised on entry, before
    anything streams.  Every call is recorded in *log* as ``"generate"``.
    """

    def __init__(
        self,
        fragments: list[str] | None = None,
        *,
        lines: list[str] | None = None,
        open_error: BaseException | None = None,
        stream_error: BaseException | None = None,
        log: list[str] | None = None,
    ) -> None:
        self.fragments = fragments or []
        self.lines = lines
        self.open_error = open_error
        self.stream_error = stream_error
        self.log = log if log is not None else []
        self.requests: list = []
        self.released = False

    @asynccontextmanager
    async def __call__(self, request):
        self.log.append("generate")
        self.requests.append(request)
        if self.open_error is not None:
            raise self.open_error
        try:
            if self.lines is not None:
                yield iter_text_deltas(self._raw_lines())
            else:
                yield self._fragments()
        finally:
            self.released = True

    async def _raw_lines(self):
        for line in self.lines or []:
            yield line

    async def _fragments(self):
        for fragment in self.fragments:
            yield fragment
        if self.stream_error is not None:
            raise self.stream_error


@pytest.fixture
def fake_generation():
    """The FakeGeneration class, for building scripted generation streams."""
    return FakeGeneration
