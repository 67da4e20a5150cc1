"""Archive passages and the citations projected from them."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

DEFAULT_SOURCE_TYPE = "article"


class Source(BaseModel):
    """A citation returned to the caller once generation completes."""

    title: str | None
    url: str | None = None
    type: str = DEFAULT_SOURCE_TYPE
    similarity: float = 0.0


@dataclass(frozen=True)
class Passage:
    """A pre-embedded fragment of the client's published content."""

    id: str
    client_id: str
    text: str
    source_title: str | None = None
    source_url: str | None = None
    source_type: str | None = None
    published_at: str | None = None
    similarity: float = 0.0

    @property
    def kind(self) -> str:
        return self.source_type or DEFAULT_SOURCE_TYPE

    @property
    def year(self) -> str:
        """Publication year, or ``"undated"``."""
        if not self.published_at or len(self.published_at) < 4:
            return "undated"
        year = self.published_at[:4]
        return year if year.isdigit() else "undated"

    def to_source(self) -> Source:
        return Source(
            title=self.source_title,
            url=self.source_url or None,
            type=self.kind,
            similarity=self.similarity,
        )


@dataclass
class RetrievalResult:
    """Ranked, deduplicated passages for one search query.

    Vector matches come first in rank order; keyword matches are appended
    in store order with similarity 0.
    """

    query: str
    passages: list[Passage] = field(default_factory=list)
    keyword_fallback_used: bool = False

    def __len__(self) -> int:
        return len(self.passages)

    def sources(self) -> list[Source]:
        return [p.to_source() for p in self.passages]
