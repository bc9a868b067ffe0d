"""
Assistant Module

Wires every component into one object the transports can use:

    EmbeddingService -> SemanticRetriever
    LLMService       -> IntentClassifier
    ConversationStateStore, Persistence, Messenger
                     -> DialogueOrchestrator

Also owns the background sweep that returns idle conversations to the
initial state.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from config.settings import Settings, get_settings
from ferrebot.embeddings import EmbeddingService
from ferrebot.intent_classifier import IntentClassifier
from ferrebot.llm_service import LLMService
from ferrebot.messaging import Messenger
from ferrebot.orchestrator import DialogueOrchestrator
from ferrebot.persistence import InMemoryPersistence, Persistence
from ferrebot.retriever import SemanticRetriever
from ferrebot.state_store import ConversationStateStore

logger = logging.getLogger(__name__)


class Assistant:
    """
    Main entry point for the store assistant.

    Example:
        assistant = build_assistant()
        await assistant.start()
        reply = await assistant.orchestrator.process_message("1234", "hola")
        await assistant.stop()
    """

    def __init__(
        self,
        orchestrator: DialogueOrchestrator,
        settings: Optional[Settings] = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()

        self._sweeper: Optional[asyncio.Task] = None
        self._started = False

    @property
    def retriever(self) -> Optional[SemanticRetriever]:
        return self.orchestrator.retriever

    @property
    def state_store(self) -> ConversationStateStore:
        return self.orchestrator.state_store

    @property
    def persistence(self) -> Persistence:
        return self.orchestrator.persistence

    @property
    def is_started(self) -> bool:
        return self._started

    def attach_messenger(self, messenger: Messenger) -> None:
        """Set the outbound channel once the transport exists."""
        self.orchestrator.messenger = messenger

    async def start(self) -> None:
        """
        Build or load the FAQ index and start the session sweeper.

        A retriever that cannot be initialized is logged and left
        uninitialized; FAQ questions then fall back to "not found".
        """
        if self._started:
            return

        if self.retriever is not None:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self.retriever.initialize)
                logger.info(f"Retriever ready with {self.retriever.document_count} documents")
            except Exception as e:
                logger.error(f"Failed to initialize retriever: {e}", exc_info=True)

        interval = self.settings.state_store.sweep_interval_seconds
        if interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))

        self._started = True
        logger.info("Assistant started")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        self._started = False
        logger.info("Assistant stopped")

    async def expire_sessions(self) -> int:
        """Reset conversations idle for longer than the session timeout."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.state_store.expire_inactive)

    async def prune_messages(self) -> int:
        """Drop message logs older than the retention window."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self.persistence.delete_old_messages,
            self.settings.state_store.message_retention_days,
        )

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.expire_sessions()
                await self.prune_messages()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")

    def reset_conversation(self, channel_id: str) -> None:
        self.state_store.clear(channel_id)

    def get_stats(self) -> Dict[str, Any]:
        """Collect statistics from every component."""
        stats: Dict[str, Any] = {
            "started": self._started,
            "dialogue": self.orchestrator.get_stats(),
            "state_store": self.state_store.get_stats(),
        }

        if self.retriever is not None:
            stats["knowledge_base"] = {
                "initialized": self.retriever.is_initialized,
                "documents": self.retriever.document_count,
            }

        if hasattr(self.persistence, "get_stats"):
            stats["persistence"] = self.persistence.get_stats()

        return stats


def build_assistant(
    settings: Optional[Settings] = None,
    embedding_service: Optional[EmbeddingService] = None,
    llm_service: Optional[LLMService] = None,
    retriever: Optional[SemanticRetriever] = None,
    classifier: Optional[IntentClassifier] = None,
    state_store: Optional[ConversationStateStore] = None,
    persistence: Optional[Persistence] = None,
    messenger: Optional[Messenger] = None,
) -> Assistant:
    """
    Factory function to create a configured Assistant.

    Any component passed in is used as is; the rest are built from settings.
    """
    settings = settings or get_settings()

    if retriever is None:
        embedding_service = embedding_service or EmbeddingService(config=settings.embedding)
        retriever = SemanticRetriever(embedding_service, config=settings.vector_store)

    if classifier is None:
        if llm_service is None:
            try:
                llm_service = LLMService(config=settings.llm)
            except ValueError as e:
                logger.warning(f"No LLM available, using keyword classification: {e}")
        classifier = IntentClassifier(llm_service, context_turns=settings.retrieval.context_turns)

    orchestrator = DialogueOrchestrator(
        classifier=classifier,
        retriever=retriever,
        state_store=state_store or ConversationStateStore(config=settings.state_store),
        persistence=persistence or InMemoryPersistence(),
        messenger=messenger,
        settings=settings,
    )

    logger.info(
        f"Assistant built: llm={llm_service.provider_name if llm_service else 'keywords'}, "
        f"state_store={settings.state_store.provider}"
    )
    return Assistant(orchestrator, settings=settings)
