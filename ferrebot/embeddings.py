"""
Embedding Service Module

Turns text into fixed-length vectors for the FAQ index. Two providers:
- Local: Sentence Transformers (multilingual MiniLM) - Free, no API key needed
- Cloud: OpenAI (text-embedding-3-small) - Requires API key

Embedding is a pure function of the text and the configured model. Remote
failures are retried with exponential backoff and then surfaced as
EmbeddingUnavailableError, which callers turn into a "not found" answer.

Embedding Dimensions:
- paraphrase-multilingual-MiniLM-L12-v2: 384 dimensions
- text-embedding-3-small: 1536 dimensions
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
from huggingface_hub import login

from config.settings import get_settings, EmbeddingConfig
from ferrebot.exceptions import EmbeddingUnavailableError

if hf_token := os.getenv("HF_TOKEN"):
    login(token=hf_token)

# Configure logging
logger = logging.getLogger(__name__)


class BaseEmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    All embedding providers must implement:
    - embed_text: Embed a single text string
    - embed_batch: Embed multiple texts efficiently
    - dimension: Return the embedding dimension
    """

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts efficiently.

        Args:
            texts: List of input texts

        Returns:
            List of embedding vectors
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""
        pass


class LocalEmbeddingProvider(BaseEmbeddingProvider):
    """
    Local embedding provider using Sentence Transformers.

    The default model is multilingual so Spanish questions land close to
    Spanish FAQ entries.
    """

    def __init__(self, model_name: str = "paraphrase-multilingual-MiniLM-L12-v2"):
        """
        Initialize the local embedding provider.

        Args:
            model_name: Name of the sentence-transformers model
        """
        self._model_name = model_name
        self._model = None
        self._dimension = None

        logger.info(f"Initializing LocalEmbeddingProvider with model: {model_name}")

    def _load_model(self):
        """Lazy load the model (only when first needed)."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading sentence-transformers model: {self._model_name}")
            self._model = SentenceTransformer(self._model_name)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Model loaded. Embedding dimension: {self._dimension}")

    def embed_text(self, text: str) -> List[float]:
        self._load_model()
        embedding = self._model.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self._load_model()

        if not texts:
            return []

        logger.debug(f"Embedding batch of {len(texts)} texts")
        embeddings = self._model.encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=len(texts) > 10,
            batch_size=32,
        )
        return embeddings.tolist()

    @property
    def dimension(self) -> int:
        """Return embedding dimension."""
        self._load_model()
        return self._dimension

    @property
    def model_name(self) -> str:
        """Return model name."""
        return self._model_name


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """
    OpenAI embedding provider using the embeddings API.

    Models:
    - text-embedding-3-small: 1536 dims (cheaper)
    - text-embedding-3-large: 3072 dims (better quality)
    - text-embedding-ada-002: 1536 dims (legacy)
    """

    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the OpenAI embedding provider.

        Args:
            model_name: Name of the OpenAI embedding model
            api_key: OpenAI API key (or from environment)
            timeout: Per-request timeout in seconds
        """
        self._model_name = model_name
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        if model_name not in self.MODEL_DIMENSIONS:
            logger.warning(
                f"Unknown model {model_name}, assuming 1536 dimensions. "
                f"Known models: {list(self.MODEL_DIMENSIONS.keys())}"
            )

        logger.info(f"Initializing OpenAIEmbeddingProvider with model: {model_name}")

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import OpenAI

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                settings = get_settings()
                api_key = settings.embedding.openai_api_key

            if not api_key:
                raise ValueError(
                    "OpenAI API key not found. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )

            # Retries are handled by EmbeddingService
            self._client = OpenAI(api_key=api_key, timeout=self._timeout, max_retries=0)
            logger.info("OpenAI client initialized")

        return self._client

    def embed_text(self, text: str) -> List[float]:
        client = self._get_client()
        response = client.embeddings.create(
            input=text,
            model=self._model_name,
        )
        return response.data[0].embedding

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts using OpenAI API.

        Inputs are sent in groups of 100 and results re-ordered by index.
        """
        if not texts:
            return []

        client = self._get_client()
        logger.debug(f"Embedding batch of {len(texts)} texts via OpenAI")

        batch_size = 100
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            response = client.embeddings.create(
                input=batch,
                model=self._model_name,
            )
            sorted_data = sorted(response.data, key=lambda x: x.index)
            all_embeddings.extend(item.embedding for item in sorted_data)

        return all_embeddings

    @property
    def dimension(self) -> int:
        """Return embedding dimension."""
        return self.MODEL_DIMENSIONS.get(self._model_name, 1536)

    @property
    def model_name(self) -> str:
        """Return model name."""
        return self._model_name


class EmbeddingService:
    """
    Main embedding service that provides a unified interface.

    This is the class that other components should use.
    It handles provider selection based on configuration and wraps every
    provider call in a retry loop with exponential backoff.

    Example:
        service = EmbeddingService()  # Uses config
        embedding = service.embed_text("¿Cuál es el horario?")

        # Or inject a provider (tests, custom models)
        service = EmbeddingService(provider=MyProvider())
    """

    def __init__(
        self,
        provider=None,
        config: Optional[EmbeddingConfig] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            provider: "local", "openai", or a BaseEmbeddingProvider instance
                (default from config)
            config: Optional EmbeddingConfig instance
        """
        self.config = config or get_settings().embedding

        provider = provider or self.config.provider

        if isinstance(provider, BaseEmbeddingProvider):
            self._provider = provider
            self._provider_name = type(provider).__name__
        elif provider == "local":
            self._provider = LocalEmbeddingProvider(
                model_name=self.config.local_model
            )
            self._provider_name = provider
        elif provider == "openai":
            self._provider = OpenAIEmbeddingProvider(
                model_name=self.config.openai_model,
                api_key=self.config.openai_api_key,
                timeout=self.config.request_timeout,
            )
            self._provider_name = provider
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")

        logger.info(f"EmbeddingService initialized with {self._provider_name} provider")

    def _with_retries(self, operation, description: str):
        """Run a provider call, retrying with exponential backoff."""
        attempts = max(1, self.config.max_retries)
        delay = self.config.retry_base_delay
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Embedding {description} failed (attempt {attempt}/{attempts}): {e}"
                )
                if attempt < attempts:
                    time.sleep(delay)
                    delay *= 2

        logger.error(f"Embedding {description} failed after {attempts} attempts")
        raise EmbeddingUnavailableError(
            f"Could not embed {description}",
            details=str(last_error),
        ) from last_error

    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If the text is empty
            EmbeddingUnavailableError: If the provider keeps failing
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        return self._with_retries(lambda: self._provider.embed_text(text), "text")

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Empty strings are rejected rather than skipped so the output stays
        aligned with the input.
        """
        if any(not t or not t.strip() for t in texts):
            raise ValueError("Cannot embed empty text")

        if not texts:
            return []

        return self._with_retries(lambda: self._provider.embed_batch(texts), "batch")

    def embed_query(self, query: str) -> List[float]:
        """Embed a user question (alias of embed_text)."""
        return self.embed_text(query)

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        return self._provider.dimension

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name (local/openai)."""
        return self._provider_name


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Similarity score between -1 and 1 (1 = identical)
    """
    arr1 = np.array(vec1)
    arr2 = np.array(vec2)

    norm1 = np.linalg.norm(arr1)
    norm2 = np.linalg.norm(arr2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(arr1, arr2) / (norm1 * norm2))
