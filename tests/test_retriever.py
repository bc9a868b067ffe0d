"""
Tests for the semantic FAQ retriever.

Run with: pytest tests/test_retriever.py -v
"""

from unittest.mock import Mock

import pytest

from ferrebot.embeddings import EmbeddingService
from ferrebot.exceptions import EmbeddingUnavailableError
from ferrebot.knowledge_base import DEFAULT_KNOWLEDGE_BASE, KnowledgeDocument, load_knowledge_base
from ferrebot.retriever import SemanticRetriever
from ferrebot.vector_store import VectorIndex


@pytest.fixture
def retriever(embedding_service, test_documents, vector_config, tmp_path):
    retriever = SemanticRetriever(
        embedding_service,
        documents=test_documents,
        config=vector_config,
        index_dir=str(tmp_path),
    )
    retriever.initialize()
    return retriever


class TestInitialize:
    def test_builds_and_persists(self, retriever, tmp_path):
        assert retriever.is_initialized
        assert retriever.document_count == 3
        assert VectorIndex.artifacts_exist(tmp_path)

    def test_initialize_is_idempotent(self, retriever, hashing_provider):
        calls = hashing_provider.calls
        retriever.initialize()
        assert hashing_provider.calls == calls

    def test_loads_persisted_pair(self, retriever, embedding_service, vector_config, tmp_path, hashing_provider):
        """A second retriever reuses the saved index instead of re-embedding."""
        calls = hashing_provider.calls
        reloaded = SemanticRetriever(
            embedding_service,
            documents=[],
            config=vector_config,
            index_dir=str(tmp_path),
        )
        reloaded.initialize()

        assert hashing_provider.calls == calls
        assert [d.id for d in reloaded.documents] == [d.id for d in retriever.documents]

    def test_in_memory_only(self, embedding_service, test_documents, vector_config, tmp_path):
        retriever = SemanticRetriever(
            embedding_service,
            documents=test_documents,
            config=vector_config,
            index_dir=str(tmp_path / "unused"),
            persist=False,
        )
        retriever.initialize()
        assert not (tmp_path / "unused").exists()


class TestGetBestAnswer:
    def test_exact_question_found(self, retriever):
        result = retriever.get_best_answer("¿Cuál es el horario de atención?", threshold=0.65)

        assert result.found is True
        assert result.source == "faq_schedule"
        assert result.category == "faq_schedule"
        assert "lunes a sábado" in result.answer
        assert result.confidence >= 0.65

    def test_below_threshold_not_found(self, retriever):
        result = retriever.get_best_answer("fierro corrugado", threshold=0.65)

        assert result.found is False
        assert result.answer is None
        assert result.confidence < 0.65

    def test_never_found_below_threshold(self, retriever):
        """Raising the threshold above the best similarity hides the answer."""
        best = retriever.get_best_answer("horario de atención", threshold=0.0)
        assert best.found is True

        stricter = retriever.get_best_answer("horario de atención", threshold=best.confidence + 0.01)
        assert stricter.found is False
        assert stricter.source == best.source

    def test_empty_question(self, retriever):
        assert retriever.get_best_answer("  ", threshold=0.1).found is False

    def test_embedding_failure_is_not_found(self, retriever):
        retriever.embedding_service = Mock(spec=EmbeddingService)
        retriever.embedding_service.embed_query.side_effect = EmbeddingUnavailableError()

        result = retriever.get_best_answer("¿Cuál es el horario de atención?", threshold=0.65)

        assert result.found is False

    def test_orphan_index_file_is_not_found(self, embedding_service, test_documents, vector_config, tmp_path):
        index_path, _ = VectorIndex.artifact_paths(tmp_path)
        index_path.write_bytes(b"")
        retriever = SemanticRetriever(
            embedding_service,
            documents=test_documents,
            config=vector_config,
            index_dir=str(tmp_path),
        )

        result = retriever.get_best_answer("cuál es el horario de atención", threshold=0.65)

        assert result.found is False
        assert retriever.is_initialized is False

    def test_empty_knowledge_base(self, embedding_service, vector_config):
        retriever = SemanticRetriever(
            embedding_service,
            documents=[],
            config=vector_config,
            persist=False,
        )

        result = retriever.get_best_answer("horario", threshold=0.0)

        assert result.found is False
        assert retriever.document_count == 0

    def test_search_similar_ranked(self, retriever):
        matches = retriever.search_similar("delivery a domicilio", k=3)

        assert matches[0]["document"].id == "faq_delivery"
        similarities = [m["similarity"] for m in matches]
        assert similarities == sorted(similarities, reverse=True)


class TestAddDocument:
    def test_add_then_find(self, retriever, tmp_path):
        doc = KnowledgeDocument(
            id="faq_location",
            text="dónde están ubicados dirección tienda",
            category="faq_service",
            answer="Estamos en Av. Los Constructores 123.",
        )

        assert retriever.add_document(doc) is True
        assert retriever.document_count == 4

        result = retriever.get_best_answer("¿Dónde están ubicados?", threshold=0.5)
        assert result.source == "faq_location"

        # Persisted pair includes the new document
        assert len(VectorIndex(dimension=64).load(tmp_path)) == 4

    def test_duplicate_id_rejected(self, retriever, test_documents):
        assert retriever.add_document(test_documents[0]) is False
        assert retriever.document_count == 3


class TestKnowledgeBase:
    def test_default_entries_unique(self):
        ids = [d.id for d in DEFAULT_KNOWLEDGE_BASE]
        assert len(ids) == len(set(ids))
        assert load_knowledge_base() == DEFAULT_KNOWLEDGE_BASE

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(
            '[{"id": "x", "text": "pregunta", "category": "faq_service", "answer": "respuesta"}]',
            encoding="utf-8",
        )
        documents = load_knowledge_base(str(path))
        assert documents == [KnowledgeDocument("x", "pregunta", "faq_service", "respuesta")]

    def test_duplicate_ids_rejected(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(
            '[{"id": "x", "text": "a"}, {"id": "x", "text": "b"}]',
            encoding="utf-8",
        )
        with pytest.raises(ValueError):
            load_knowledge_base(str(path))
