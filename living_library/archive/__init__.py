"""Content archive search over embeddings and keywords."""

from living_library.archive.embeddings import EmbeddingError, embed_query
from living_library.archive.models import Passage, RetrievalResult, Source
from living_library.archive.retrieval import Retriever, extract_keywords
from living_library.archive.store import ArchiveStore, RetrievalError

__all__ = [
    "ArchiveStore",
    "EmbeddingError",
    "Passage",
    "RetrievalError",
    "RetrievalResult",
    "Retriever",
    "Source",
    "embed_query",
    "extract_keywords",
]
