"""Chat pipeline: query rewriting, context assembly and streaming."""

from living_library.chat.context import KnowledgeDocument, build_generation_request
from living_library.chat.orchestrator import PreparedTurn, StreamingOrchestrator, StreamState
from living_library.chat.pipeline import ChatPipeline
from living_library.chat.rewriter import LexicalFollowUpDetector, QueryRewriter

__all__ = [
    "ChatPipeline",
    "KnowledgeDocument",
    "LexicalFollowUpDetector",
    "PreparedTurn",
    "QueryRewriter",
    "StreamState",
    "StreamingOrchestrator",
    "build_generation_request",
]
