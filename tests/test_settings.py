"""
Tests for environment-driven settings.
"""

import os
from unittest.mock import patch

from config.settings import Settings


class TestSettingsFromEnv:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        assert settings.embedding.provider == "local"
        assert settings.embedding.dimension == 384
        assert settings.retrieval.faq_threshold == 0.65
        assert settings.retrieval.fallback_threshold == 0.6
        assert settings.state_store.provider == "memory"
        assert settings.state_store.session_timeout_minutes == 30
        assert settings.bot.currency_symbol == "S/"

    def test_overrides(self):
        env = {
            "LLM_PROVIDER": "mistral",
            "FAQ_SIMILARITY_THRESHOLD": "0.7",
            "STATE_STORE_PROVIDER": "mongodb",
            "MONGODB_URI": "mongodb://localhost:27017",
            "SESSION_TIMEOUT_MINUTES": "15",
            "CLASSIFY_TIMEOUT": "3",
            "STORE_NAME": "Ferretería Central",
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.llm.provider == "mistral"
        assert settings.retrieval.faq_threshold == 0.7
        assert settings.state_store.provider == "mongodb"
        assert settings.state_store.mongodb_uri == "mongodb://localhost:27017"
        assert settings.state_store.session_timeout_minutes == 15
        assert settings.timeouts.classify == 3.0
        assert settings.bot.store_name == "Ferretería Central"
        assert settings.log_level == "DEBUG"

    def test_openai_embedding_dimension(self):
        with patch.dict(os.environ, {"EMBEDDING_PROVIDER": "openai"}, clear=True):
            settings = Settings.from_env()
        assert settings.embedding.dimension == 1536
