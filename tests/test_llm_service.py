"""
Tests for LLM Service Module

Tests the LLMService, providers, and LLMResponse dataclass.
Provider clients are mocked; no network calls are made.
"""

import pytest
from unittest.mock import Mock, patch

from config.settings import LLMConfig
from ferrebot.llm_service import (
    LLMService,
    LLMResponse,
    OllamaProvider,
    OpenAIProvider,
    GeminiProvider,
    MistralProvider,
)

MESSAGES = [
    {"role": "system", "content": "Clasifica la intención."},
    {"role": "assistant", "content": "¡Hola! ¿En qué puedo ayudarte?"},
    {"role": "user", "content": "quiero hacer un pedido"},
]


class TestLLMResponse:
    """Tests for LLMResponse dataclass."""

    def test_response_creation(self):
        response = LLMResponse(content="Test response", model="test-model")
        assert response.content == "Test response"
        assert response.usage is None
        assert response.finish_reason is None

    def test_response_str(self):
        assert str(LLMResponse(content="Hola", model="test")) == "Hola"


class TestOllamaProvider:
    """Tests for Ollama provider."""

    def test_json_mode_sets_format(self):
        provider = OllamaProvider(model="llama3.1")
        client = Mock()
        client.chat.return_value = {
            "message": {"content": '{"intent": "place_order", "confidence": 0.9}'},
            "prompt_eval_count": 12,
            "eval_count": 8,
        }
        provider._client = client

        response = provider.chat(MESSAGES, max_tokens=100, json_mode=True)

        kwargs = client.chat.call_args.kwargs
        assert kwargs["format"] == "json"
        assert kwargs["options"]["num_predict"] == 100
        assert response.usage == {"prompt_tokens": 12, "completion_tokens": 8}

    def test_base_url_trailing_slash(self):
        provider = OllamaProvider(base_url="http://localhost:11434/")
        assert provider._base_url == "http://localhost:11434"


class TestOpenAIProvider:
    """Tests for OpenAI provider."""

    def test_json_mode_sets_response_format(self):
        provider = OpenAIProvider(api_key="sk-test")
        client = Mock()
        client.chat.completions.create.return_value = Mock(
            choices=[Mock(message=Mock(content='{"intent": "greeting", "confidence": 0.95}'), finish_reason="stop")],
            model="gpt-4o-mini",
            usage=None,
        )
        provider._client = client

        response = provider.chat(MESSAGES, json_mode=True)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert response.content.startswith('{"intent"')

    def test_missing_api_key(self):
        provider = OpenAIProvider(api_key=None)
        with patch.dict("os.environ", {}, clear=True), \
                patch("ferrebot.llm_service.get_settings") as mock_settings:
            mock_settings.return_value = Mock(llm=Mock(openai_api_key=None))
            with pytest.raises(ValueError):
                provider.chat(MESSAGES)

    def test_errors_propagate(self):
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = Mock()
        provider._client.chat.completions.create.side_effect = RuntimeError("rate limited")

        with pytest.raises(RuntimeError):
            provider.chat(MESSAGES)


class TestGeminiProvider:
    """Tests for Gemini provider."""

    def test_roles_mapped(self):
        provider = GeminiProvider(api_key="test-key")
        client = Mock()
        client.models.generate_content.return_value = Mock(text='{"intent": "goodbye", "confidence": 0.8}')
        provider._client = client

        response = provider.chat(MESSAGES, json_mode=True)

        kwargs = client.models.generate_content.call_args.kwargs
        assert [c.role for c in kwargs["contents"]] == ["model", "user"]
        assert "Clasifica la intención." in str(kwargs["config"].system_instruction)
        assert kwargs["config"].response_mime_type == "application/json"
        assert response.model == "gemini-2.0-flash"


class TestMistralProvider:
    """Tests for Mistral provider."""

    def test_chat(self):
        provider = MistralProvider(api_key="test-key")
        client = Mock()
        client.chat.complete.return_value = Mock(
            choices=[Mock(message=Mock(content="{}"), finish_reason="stop")],
            usage=Mock(prompt_tokens=1, completion_tokens=2, total_tokens=3),
        )
        provider._client = client

        response = provider.chat(MESSAGES, json_mode=True)

        assert client.chat.complete.call_args.kwargs["response_format"] == {"type": "json_object"}
        assert response.usage["total_tokens"] == 3


class TestLLMService:
    """Tests for the main LLMService class."""

    @pytest.mark.parametrize("provider,cls", [
        ("ollama", OllamaProvider),
        ("openai", OpenAIProvider),
        ("gemini", GeminiProvider),
        ("mistral", MistralProvider),
    ])
    def test_provider_selection(self, provider, cls):
        service = LLMService(provider=provider, config=LLMConfig(request_timeout=3.0))
        assert isinstance(service._provider, cls)
        assert service._provider._timeout == 3.0
        assert service.provider_name == provider

    def test_invalid_provider(self):
        with pytest.raises(ValueError):
            LLMService(provider="invalid", config=LLMConfig())

    def test_chat_delegates(self):
        service = LLMService(provider="openai", config=LLMConfig())
        service._provider = Mock()
        service._provider.chat.return_value = LLMResponse(content="{}", model="m")

        service.chat(MESSAGES, max_tokens=50, json_mode=True)

        service._provider.chat.assert_called_once_with(
            messages=MESSAGES, temperature=0.3, max_tokens=50, json_mode=True
        )
