"""
Tests for assistant wiring and lifecycle.
"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock, patch

from ferrebot.assistant import Assistant, build_assistant
from ferrebot.intent_classifier import IntentClassifier
from ferrebot.persistence import InMemoryPersistence
from ferrebot.retriever import SemanticRetriever
from ferrebot.states import DialogueState


@pytest.fixture
def retriever(embedding_service, test_documents, vector_config):
    return SemanticRetriever(
        embedding_service,
        documents=test_documents,
        config=vector_config,
        persist=False,
    )


@pytest.fixture
def assistant(settings, retriever):
    return build_assistant(
        settings,
        retriever=retriever,
        classifier=IntentClassifier(None),
        persistence=InMemoryPersistence(),
    )


class TestBuildAssistant:
    def test_injected_components_are_used(self, assistant, retriever):
        assert isinstance(assistant, Assistant)
        assert assistant.retriever is retriever
        assert assistant.orchestrator.messenger is None

    def test_without_llm_uses_keywords(self, settings, retriever):
        with patch("ferrebot.assistant.LLMService", side_effect=ValueError("OPENAI_API_KEY not set")):
            assistant = build_assistant(settings, retriever=retriever)

        assert assistant.orchestrator.classifier.llm_service is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_builds_index(self, assistant):
        await assistant.start()

        assert assistant.is_started
        assert assistant.retriever.is_initialized
        assert assistant.retriever.document_count == 3

        await assistant.stop()
        assert not assistant.is_started

    @pytest.mark.asyncio
    async def test_start_survives_retriever_failure(self, settings):
        retriever = Mock(spec=SemanticRetriever)
        retriever.initialize.side_effect = RuntimeError("model download failed")
        assistant = build_assistant(settings, retriever=retriever, classifier=IntentClassifier(None))

        await assistant.start()

        assert assistant.is_started

    @pytest.mark.asyncio
    async def test_sweeper_runs_when_enabled(self, settings, retriever):
        settings.state_store.sweep_interval_seconds = 60
        assistant = build_assistant(settings, retriever=retriever, classifier=IntentClassifier(None))

        await assistant.start()
        assert assistant._sweeper is not None

        await assistant.stop()
        assert assistant._sweeper is None

    @pytest.mark.asyncio
    async def test_expire_sessions(self, assistant):
        assistant.state_store.set("u1", DialogueState.AWAITING_PRODUCTS, {"action": "order"})
        assert await assistant.expire_sessions() == 0


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_cover_every_component(self, assistant):
        await assistant.start()
        await assistant.orchestrator.process_message("u1", "hola")

        stats = assistant.get_stats()

        assert stats["started"] is True
        assert stats["dialogue"]["turns"] == 1
        assert stats["knowledge_base"] == {"initialized": True, "documents": 3}
        assert "state_store" in stats
        assert "persistence" in stats
        await assistant.stop()

    def test_reset_conversation(self, assistant):
        assistant.state_store.set("u1", DialogueState.AWAITING_CONFIRMATION, {"total": 10.0})

        assistant.reset_conversation("u1")

        record = assistant.state_store.get("u1")
        assert record.state == DialogueState.INITIAL
        assert record.context == {}


class TestMessageRetention:
    @pytest.mark.asyncio
    async def test_recent_logs_kept(self, assistant):
        assistant.persistence.save_message(1, "user", "hola", "greeting", 0.8)

        assert await assistant.prune_messages() == 0
        assert assistant.persistence.get_recent_context(1)

    @pytest.mark.asyncio
    async def test_logs_past_retention_dropped(self, assistant):
        assistant.persistence.save_message(1, "user", "hola", "greeting", 0.8)
        later = datetime.now(timezone.utc) + timedelta(days=31)

        with patch("ferrebot.memory._utcnow", return_value=later):
            removed = await assistant.prune_messages()

        assert removed == 1
        assert assistant.persistence.get_recent_context(1) == []
