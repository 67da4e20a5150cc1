"""Living Library server entry point."""

import asyncio
import logging

from living_library.archive.retrieval import Retriever
from living_library.chat.context import KnowledgeDocument
from living_library.chat.pipeline import ChatPipeline
from living_library.config import settings
from living_library.server import ChatServer
from living_library.store.messages import MessageStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def build_pipeline() -> ChatPipeline:
    """Wire the production pipeline from settings."""
    knowledge = KnowledgeDocument.load(settings.knowledge_document_path)
    return ChatPipeline(
        store=MessageStore.get(),
        retriever=Retriever(),
        knowledge=knowledge,
    )


async def serve() -> None:
    """Run the chat server until cancelled."""
    server = ChatServer(build_pipeline())
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    """Start the Living Library chat server."""
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty — generation calls will fail")
    if not settings.voyage_api_key:
        logger.warning("VOYAGE_API_KEY is empty — embedding calls will fail")

    logger.info("Starting Living Library with model %s...", settings.claude_model)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
