"""
Shared fixtures.

HashingEmbeddingProvider gives deterministic bag-of-words vectors, so
retrieval tests run without downloading a model: texts with the same words
get similarity 1.0 and texts with no words in common get 0.
"""

import re
import zlib
from typing import List

import pytest

from config.settings import (
    BotConfig,
    EmbeddingConfig,
    RetrievalConfig,
    Settings,
    StateStoreConfig,
    TimeoutConfig,
    VectorStoreConfig,
)
from ferrebot.embeddings import BaseEmbeddingProvider, EmbeddingService
from ferrebot.knowledge_base import KnowledgeDocument


class HashingEmbeddingProvider(BaseEmbeddingProvider):
    """Word counts hashed into a fixed number of buckets."""

    def __init__(self, dimension: int = 64):
        self._dimension = dimension
        self.calls = 0

    def embed_text(self, text: str) -> List[float]:
        self.calls += 1
        vector = [0.0] * self._dimension
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self._dimension] += 1.0
        return vector

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(t) for t in texts]

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "hashing-bow"


TEST_DOCUMENTS = [
    KnowledgeDocument(
        id="faq_schedule",
        text="cuál es el horario de atención",
        category="faq_schedule",
        answer="Nuestro horario de atención es de lunes a sábado de 8:00 AM a 6:00 PM.",
    ),
    KnowledgeDocument(
        id="faq_delivery",
        text="hacen delivery envío a domicilio",
        category="faq_service",
        answer="Sí, hacemos delivery dentro de Lima Metropolitana.",
    ),
    KnowledgeDocument(
        id="faq_payment",
        text="aceptan tarjeta yape plin pagos",
        category="faq_service",
        answer="Aceptamos efectivo, tarjetas, Yape y Plin.",
    ),
]


@pytest.fixture
def embedding_config():
    return EmbeddingConfig(max_retries=3, retry_base_delay=0.01)


@pytest.fixture
def hashing_provider():
    return HashingEmbeddingProvider()


@pytest.fixture
def embedding_service(hashing_provider, embedding_config):
    return EmbeddingService(provider=hashing_provider, config=embedding_config)


@pytest.fixture
def vector_config():
    return VectorStoreConfig(index_type="flat")


@pytest.fixture
def test_documents():
    return list(TEST_DOCUMENTS)


@pytest.fixture
def settings(vector_config):
    """Settings with short timeouts and no background sweep."""
    return Settings(
        embedding=EmbeddingConfig(max_retries=1, retry_base_delay=0.0),
        vector_store=vector_config,
        retrieval=RetrievalConfig(),
        state_store=StateStoreConfig(provider="memory", sweep_interval_seconds=0),
        timeouts=TimeoutConfig(classify=2.0, retrieval=2.0, order=2.0, messaging=1.0),
        bot=BotConfig(max_concurrent_events=4),
    )
