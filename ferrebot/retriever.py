"""
Semantic Retriever Module

Answers free-form questions from the FAQ knowledge base.

Pipeline:
1. initialize(): load the persisted index/document pair, or embed every
   KnowledgeDocument, insert it at its list position and persist both
2. get_best_answer(): embed the question, take the single nearest document,
   similarity = 1 - cosine distance, found only when similarity >= threshold

Embedding failures never escape get_best_answer: they are logged and
reported as "not found" so the conversation can carry on.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config.settings import get_settings, VectorStoreConfig
from ferrebot.embeddings import EmbeddingService
from ferrebot.exceptions import DataInconsistencyError, ExternalServiceUnavailable
from ferrebot.knowledge_base import KnowledgeDocument, load_knowledge_base
from ferrebot.vector_store import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """
    Outcome of a best-answer lookup.

    Attributes:
        found: True only when confidence >= the requested threshold
        answer: Stored answer of the nearest document (None when not found)
        confidence: Similarity of the nearest document (0 when nothing matched)
        source: Id of the nearest document
        category: Category of the nearest document
    """
    found: bool
    answer: Optional[str] = None
    confidence: float = 0.0
    source: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "answer": self.answer,
            "confidence": self.confidence,
            "source": self.source,
            "category": self.category,
        }


class SemanticRetriever:
    """
    FAQ retriever backed by a VectorIndex.

    Example:
        retriever = SemanticRetriever(embedding_service)
        retriever.initialize()
        result = retriever.get_best_answer("¿Cuál es el horario?", threshold=0.65)
        if result.found:
            print(result.answer)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        documents: Optional[List[KnowledgeDocument]] = None,
        config: Optional[VectorStoreConfig] = None,
        index_dir: Optional[str] = None,
        persist: bool = True,
    ):
        """
        Args:
            embedding_service: Embedder shared with the rest of the process
            documents: Seed documents (defaults to the configured knowledge base)
            config: Optional VectorStoreConfig
            index_dir: Directory for the persisted pair (default from config)
            persist: Disable to keep everything in memory
        """
        self.config = config or get_settings().vector_store
        self.embedding_service = embedding_service
        self.index_dir = index_dir or self.config.index_dir
        self.persist = persist

        self._seed_documents = documents
        self._documents: List[KnowledgeDocument] = []
        self._index: Optional[VectorIndex] = None
        self._lock = threading.Lock()
        self._initialized = False

    def _new_index(self) -> VectorIndex:
        return VectorIndex(
            dimension=self.embedding_service.dimension,
            index_type=self.config.index_type,
            hnsw_m=self.config.hnsw_m,
            ef_construction=self.config.hnsw_ef_construction,
            ef_search=self.config.hnsw_ef_search,
        )

    def initialize(self) -> None:
        """
        Load or build the index. Calling it again is a no-op.

        Raises:
            DataInconsistencyError: Persisted artifacts are incomplete or mismatched
            EmbeddingUnavailableError: Seed documents could not be embedded
        """
        with self._lock:
            if self._initialized:
                return

            index = self._new_index()

            if self.persist and VectorIndex.artifacts_exist(self.index_dir):
                stored = index.load(self.index_dir)
                self._documents = [KnowledgeDocument.from_dict(d) for d in stored]
                logger.info(f"Loaded {len(self._documents)} knowledge documents from disk")
            else:
                documents = self._seed_documents
                if documents is None:
                    documents = load_knowledge_base(self.config.knowledge_base_path)

                if documents:
                    vectors = self.embedding_service.embed_batch([d.text for d in documents])
                    index.add_batch(vectors)
                self._documents = list(documents)

                if self.persist:
                    index.save(self.index_dir, [d.to_dict() for d in self._documents])
                logger.info(f"Built vector index with {len(self._documents)} documents")

            self._index = index
            self._initialized = True

    def add_document(self, document: KnowledgeDocument) -> bool:
        """
        Embed and insert one document, then re-save the whole index.

        Returns:
            True on success; False for a duplicate id or an embedding failure
        """
        self.initialize()

        if any(d.id == document.id for d in self._documents):
            logger.warning(f"Knowledge document {document.id} already indexed")
            return False

        try:
            vector = self.embedding_service.embed_text(document.text)
        except (ExternalServiceUnavailable, ValueError) as e:
            logger.error(f"Could not embed document {document.id}: {e}")
            return False

        with self._lock:
            position = self._index.add(vector)
            self._documents.append(document)
            if position != len(self._documents) - 1:
                logger.error("Vector index and document list are out of step")

            if self.persist:
                self._index.save(self.index_dir, [d.to_dict() for d in self._documents])

        logger.info(f"Added knowledge document {document.id}")
        return True

    def search_similar(self, question: str, k: int = 3) -> List[Dict[str, Any]]:
        """
        Return the k nearest documents with their similarity.

        Raises:
            EmbeddingUnavailableError: If the question cannot be embedded
        """
        self.initialize()
        vector = self.embedding_service.embed_query(question)

        with self._lock:
            hits = self._index.search(vector, k)
            documents = list(self._documents)

        return [
            {"document": documents[hit.index], "similarity": hit.similarity}
            for hit in hits
            if hit.index < len(documents)
        ]

    def get_best_answer(self, question: str, threshold: float) -> RetrievalResult:
        """
        Answer a question from the nearest FAQ entry.

        Args:
            question: Free-form user text
            threshold: Minimum similarity (0-1) for the answer to count

        Returns:
            RetrievalResult; found is never True below threshold
        """
        if not question or not question.strip():
            return RetrievalResult(found=False)

        try:
            matches = self.search_similar(question, k=1)
        except ExternalServiceUnavailable as e:
            logger.error(f"Retrieval unavailable: {e}")
            return RetrievalResult(found=False)
        except DataInconsistencyError as e:
            logger.error(f"Knowledge base is inconsistent: {e.message} {e.details}")
            return RetrievalResult(found=False)

        if not matches:
            return RetrievalResult(found=False)

        best = matches[0]
        document: KnowledgeDocument = best["document"]
        similarity = best["similarity"]

        if similarity < threshold:
            logger.debug(
                f"Best match {document.id} below threshold ({similarity:.3f} < {threshold})"
            )
            return RetrievalResult(
                found=False,
                confidence=similarity,
                source=document.id,
                category=document.category,
            )

        return RetrievalResult(
            found=True,
            answer=document.answer,
            confidence=similarity,
            source=document.id,
            category=document.category,
        )

    @property
    def documents(self) -> List[KnowledgeDocument]:
        return list(self._documents)

    @property
    def document_count(self) -> int:
        return len(self._documents)

    @property
    def is_initialized(self) -> bool:
        return self._initialized
