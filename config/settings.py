"""
Configuration settings for Ferrebot.

This module handles all configuration management using environment variables.
No hardcoded values - everything is configurable via .env file.
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class EmbeddingConfig:
    """Configuration for embedding models."""

    provider: Literal["local", "openai"] = "local"
    local_model: str = "paraphrase-multilingual-MiniLM-L12-v2"
    openai_model: str = "text-embedding-3-small"
    openai_api_key: Optional[str] = None

    # Retries with exponential backoff before giving up on a request
    max_retries: int = 3
    retry_base_delay: float = 0.5
    request_timeout: float = 10.0

    # paraphrase-multilingual-MiniLM-L12-v2: 384
    # text-embedding-3-small: 1536
    @property
    def dimension(self) -> int:
        """Return embedding dimension based on selected model."""
        if self.provider == "local":
            model_dimensions = {
                "paraphrase-multilingual-MiniLM-L12-v2": 384,
                "all-MiniLM-L6-v2": 384,
                "paraphrase-multilingual-mpnet-base-v2": 768,
            }
            return model_dimensions.get(self.local_model, 384)
        else:
            model_dimensions = {
                "text-embedding-3-small": 1536,
                "text-embedding-3-large": 3072,
                "text-embedding-ada-002": 1536,
            }
            return model_dimensions.get(self.openai_model, 1536)


@dataclass
class LLMConfig:
    """Configuration for the LLM used by the intent classifier."""

    provider: Literal["ollama", "openai", "gemini", "mistral"] = "openai"
    request_timeout: float = 8.0

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"

    # OpenAI settings
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Gemini settings
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"

    # Mistral settings
    mistral_api_key: Optional[str] = None
    mistral_model: str = "mistral-small-latest"


@dataclass
class VectorStoreConfig:
    """Configuration for the FAQ vector index."""

    index_dir: str = "./data/vectordb"
    index_type: Literal["hnsw", "flat"] = "hnsw"

    # HNSW graph parameters
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef_search: int = 64

    # Optional JSON file overriding the built-in FAQ entries
    knowledge_base_path: Optional[str] = None


@dataclass
class RetrievalConfig:
    """Configuration for retrieval and intent routing thresholds."""

    faq_threshold: float = 0.65  # FAQ branches
    fallback_threshold: float = 0.6  # unknown / low-confidence branch
    min_intent_confidence: float = 0.4
    context_turns: int = 3  # Prior turns sent to the classifier


@dataclass
class StateStoreConfig:
    """Configuration for the conversation state store."""

    provider: Literal["memory", "mongodb"] = "memory"

    # MongoDB settings
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "ferrebot"
    mongodb_collection: str = "conversation_states"

    # Session expiry
    session_timeout_minutes: int = 30
    sweep_interval_seconds: int = 300
    message_retention_days: int = 30


@dataclass
class TimeoutConfig:
    """Upper bounds (seconds) for calls that leave the process."""

    classify: float = 8.0
    retrieval: float = 8.0
    order: float = 10.0
    messaging: float = 5.0


@dataclass
class BotConfig:
    """Configuration for the chat transport."""

    discord_token: Optional[str] = None
    store_name: str = "Ferretería El Constructor"
    currency_symbol: str = "S/"
    max_concurrent_events: int = 8


@dataclass
class Settings:
    """
    Main settings class that aggregates all configurations.

    Usage:
        settings = get_settings()
        print(settings.embedding.provider)
        print(settings.retrieval.faq_threshold)
    """

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    state_store: StateStoreConfig = field(default_factory=StateStoreConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    bot: BotConfig = field(default_factory=BotConfig)

    # Paths
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent)
    data_dir: Path = field(default_factory=lambda: Path(__file__).parent.parent / "data")

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create Settings instance from environment variables.

        This is the primary way to instantiate Settings.
        """
        embedding = EmbeddingConfig(
            provider=os.getenv("EMBEDDING_PROVIDER", "local"),  # type: ignore
            local_model=os.getenv("LOCAL_EMBEDDING_MODEL", "paraphrase-multilingual-MiniLM-L12-v2"),
            openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            max_retries=int(os.getenv("EMBEDDING_MAX_RETRIES", "3")),
            retry_base_delay=float(os.getenv("EMBEDDING_RETRY_DELAY", "0.5")),
            request_timeout=float(os.getenv("EMBEDDING_TIMEOUT", "10")),
        )

        llm = LLMConfig(
            provider=os.getenv("LLM_PROVIDER", "openai"),  # type: ignore
            request_timeout=float(os.getenv("LLM_TIMEOUT", "8")),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.1"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            mistral_api_key=os.getenv("MISTRAL_API_KEY"),
            mistral_model=os.getenv("MISTRAL_MODEL", "mistral-small-latest"),
        )

        vector_store = VectorStoreConfig(
            index_dir=os.getenv("VECTOR_INDEX_DIR", "./data/vectordb"),
            index_type=os.getenv("VECTOR_INDEX_TYPE", "hnsw"),  # type: ignore
            hnsw_m=int(os.getenv("HNSW_M", "16")),
            hnsw_ef_construction=int(os.getenv("HNSW_EF_CONSTRUCTION", "200")),
            hnsw_ef_search=int(os.getenv("HNSW_EF_SEARCH", "64")),
            knowledge_base_path=os.getenv("KNOWLEDGE_BASE_PATH"),
        )

        retrieval = RetrievalConfig(
            faq_threshold=float(os.getenv("FAQ_SIMILARITY_THRESHOLD", "0.65")),
            fallback_threshold=float(os.getenv("FALLBACK_SIMILARITY_THRESHOLD", "0.6")),
            min_intent_confidence=float(os.getenv("MIN_INTENT_CONFIDENCE", "0.4")),
            context_turns=int(os.getenv("CONTEXT_TURNS", "3")),
        )

        state_store = StateStoreConfig(
            provider=os.getenv("STATE_STORE_PROVIDER", "memory"),  # type: ignore
            mongodb_uri=os.getenv("MONGODB_URI"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "ferrebot"),
            mongodb_collection=os.getenv("MONGODB_STATE_COLLECTION", "conversation_states"),
            session_timeout_minutes=int(os.getenv("SESSION_TIMEOUT_MINUTES", "30")),
            sweep_interval_seconds=int(os.getenv("SESSION_SWEEP_INTERVAL", "300")),
            message_retention_days=int(os.getenv("MESSAGE_RETENTION_DAYS", "30")),
        )

        timeouts = TimeoutConfig(
            classify=float(os.getenv("CLASSIFY_TIMEOUT", "8")),
            retrieval=float(os.getenv("RETRIEVAL_TIMEOUT", "8")),
            order=float(os.getenv("ORDER_TIMEOUT", "10")),
            messaging=float(os.getenv("MESSAGING_TIMEOUT", "5")),
        )

        bot = BotConfig(
            discord_token=os.getenv("DISCORD_BOT_TOKEN"),
            store_name=os.getenv("STORE_NAME", "Ferretería El Constructor"),
            currency_symbol=os.getenv("CURRENCY_SYMBOL", "S/"),
            max_concurrent_events=int(os.getenv("MAX_CONCURRENT_EVENTS", "8")),
        )

        return cls(
            embedding=embedding,
            llm=llm,
            vector_store=vector_store,
            retrieval=retrieval,
            state_store=state_store,
            timeouts=timeouts,
            bot=bot,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Singleton pattern for settings
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the singleton Settings instance.

    Returns:
        Settings: The application settings loaded from environment.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment (useful for testing).

    Returns:
        Settings: Fresh settings instance.
    """
    global _settings
    load_dotenv(override=True)
    _settings = Settings.from_env()
    return _settings
