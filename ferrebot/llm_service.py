"""
LLM Service Module

Provides an abstraction layer for the chat-completion providers used by the
intent classifier:
- Local: Ollama - Free, runs locally
- Cloud: OpenAI, Google Gemini, Mistral - Require API keys

Every provider takes an OpenAI-style message list and can be asked for a
JSON-only answer. Clients are created lazily with a request timeout so a slow
provider cannot stall a conversation turn.

Usage:
    llm = LLMService(provider="openai")
    response = llm.chat(
        [{"role": "system", "content": "..."}, {"role": "user", "content": "hola"}],
        temperature=0.3,
        max_tokens=100,
        json_mode=True,
    )
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from config.settings import get_settings, LLMConfig

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """
    Standardized response from LLM providers.

    Attributes:
        content: The generated text response
        model: Model name used for generation
        usage: Token usage statistics (if available)
        finish_reason: Why generation stopped
    """
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    def __str__(self) -> str:
        return self.content


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.
    """

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Run a chat completion.

        Args:
            messages: [{"role": "system"|"user"|"assistant", "content": "..."}]
            temperature: Creativity (0-1, lower = more deterministic)
            max_tokens: Maximum tokens in response
            json_mode: Ask the provider for a JSON object only

        Returns:
            LLMResponse object
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name."""
        pass


class OllamaProvider(BaseLLMProvider):
    """
    Ollama provider for local LLM inference.

    Requirements:
    - Ollama installed: https://ollama.ai
    - Model pulled: ollama pull llama3.1
    """

    def __init__(
        self,
        model: str = "llama3.1",
        base_url: str = "http://localhost:11434",
        timeout: float = 8.0,
    ):
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OllamaProvider: model={model}, url={base_url}")

    def _get_client(self):
        """Get or create Ollama client."""
        if self._client is None:
            import ollama
            self._client = ollama.Client(host=self._base_url, timeout=self._timeout)
            logger.info("Ollama client initialized")
        return self._client

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        options = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens

        kwargs = {"model": self._model, "messages": messages, "options": options}
        if json_mode:
            kwargs["format"] = "json"

        try:
            response = client.chat(**kwargs)
            return LLMResponse(
                content=response["message"]["content"],
                model=self._model,
                usage={
                    "prompt_tokens": response.get("prompt_eval_count", 0),
                    "completion_tokens": response.get("eval_count", 0),
                },
                finish_reason="stop",
            )
        except Exception as e:
            logger.error(f"Ollama generation error: {e}")
            raise

    @property
    def model_name(self) -> str:
        return self._model


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI provider for GPT models.

    Models:
    - gpt-4o-mini: Fast, cost-effective (default)
    - gpt-4o: Most capable
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        timeout: float = 8.0,
    ):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OpenAIProvider: model={model}")

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            from openai import OpenAI

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                settings = get_settings()
                api_key = settings.llm.openai_api_key

            if not api_key:
                raise ValueError(
                    "OpenAI API key not found. Set OPENAI_API_KEY environment variable."
                )

            # One retry at most: the keyword fallback is cheaper than waiting
            self._client = OpenAI(api_key=api_key, timeout=self._timeout, max_retries=1)
            logger.info("OpenAI client initialized")
        return self._client

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        kwargs = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)

            choice = response.choices[0]
            return LLMResponse(
                content=choice.message.content or "",
                model=response.model,
                usage={
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                } if response.usage else None,
                finish_reason=choice.finish_reason,
            )
        except Exception as e:
            logger.error(f"OpenAI generation error: {e}")
            raise

    @property
    def model_name(self) -> str:
        return self._model


class GeminiProvider(BaseLLMProvider):
    """
    Google Gemini provider using the google-genai package.

    Gemini has no chat roles for system text, so system messages become the
    system instruction and assistant turns are sent with the "model" role.
    """

    def __init__(
        self,
        model: str = "gemini-2.0-flash",
        api_key: Optional[str] = None,
        timeout: float = 8.0,
    ):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing GeminiProvider: model={model}")

    def _get_client(self):
        """Get or create Gemini client."""
        if self._client is None:
            from google import genai
            from google.genai import types

            api_key = self._api_key or os.getenv("GEMINI_API_KEY")
            if not api_key:
                settings = get_settings()
                api_key = settings.llm.gemini_api_key

            if not api_key:
                raise ValueError(
                    "Gemini API key not found. Set GEMINI_API_KEY environment variable."
                )

            self._client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(self._timeout * 1000)),
            )
            logger.info(f"Gemini client initialized with model: {self._model}")
        return self._client

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        from google.genai import types

        client = self._get_client()

        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in messages
            if m["role"] != "system"
        ]

        config = types.GenerateContentConfig(
            temperature=temperature,
            system_instruction="\n\n".join(system_parts) if system_parts else None,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )

        try:
            response = client.models.generate_content(
                model=self._model,
                contents=contents,
                config=config,
            )
            return LLMResponse(
                content=response.text or "",
                model=self._model,
                finish_reason="stop",
            )
        except Exception as e:
            logger.error(f"Gemini generation error: {e}")
            raise

    @property
    def model_name(self) -> str:
        return self._model


class MistralProvider(BaseLLMProvider):
    """
    Mistral AI cloud provider.

    Models:
    - mistral-small-latest: Fast, efficient (recommended for classification)
    - mistral-large-latest: Most capable
    """

    def __init__(
        self,
        model: str = "mistral-small-latest",
        api_key: Optional[str] = None,
        timeout: float = 8.0,
    ):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing MistralProvider: model={model}")

    def _get_client(self):
        """Get or create Mistral client."""
        if self._client is None:
            from mistralai import Mistral

            api_key = self._api_key or os.getenv("MISTRAL_API_KEY")
            if not api_key:
                settings = get_settings()
                api_key = settings.llm.mistral_api_key

            if not api_key:
                raise ValueError(
                    "Mistral API key not found. Set MISTRAL_API_KEY environment variable."
                )

            self._client = Mistral(api_key=api_key, timeout_ms=int(self._timeout * 1000))
            logger.info(f"Mistral client initialized with model: {self._model}")
        return self._client

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        kwargs = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.complete(**kwargs)

            choice = response.choices[0]
            return LLMResponse(
                content=choice.message.content or "",
                model=self._model,
                usage={
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                } if response.usage else None,
                finish_reason=choice.finish_reason,
            )
        except Exception as e:
            logger.error(f"Mistral generation error: {e}")
            raise

    @property
    def model_name(self) -> str:
        return self._model


class LLMService:
    """
    Main LLM Service with unified interface.

    This is the class that other components should use.
    It handles provider selection based on configuration.

    Example:
        llm = LLMService()
        response = llm.chat(messages, json_mode=True)
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[LLMConfig] = None,
    ):
        """
        Initialize the LLM service.

        Args:
            provider: "ollama", "openai", "gemini", or "mistral" (default from config)
            config: Optional LLMConfig instance
        """
        self.config = config or get_settings().llm

        provider = provider or self.config.provider
        timeout = self.config.request_timeout

        if provider == "ollama":
            self._provider = OllamaProvider(
                model=self.config.ollama_model,
                base_url=self.config.ollama_base_url,
                timeout=timeout,
            )
        elif provider == "openai":
            self._provider = OpenAIProvider(
                model=self.config.openai_model,
                api_key=self.config.openai_api_key,
                timeout=timeout,
            )
        elif provider == "gemini":
            self._provider = GeminiProvider(
                model=self.config.gemini_model,
                api_key=self.config.gemini_api_key,
                timeout=timeout,
            )
        elif provider == "mistral":
            self._provider = MistralProvider(
                model=self.config.mistral_model,
                api_key=self.config.mistral_api_key,
                timeout=timeout,
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        self._provider_name = provider
        logger.info(f"LLMService initialized with {provider} provider")

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Run a chat completion on the configured provider.

        Args:
            messages: OpenAI-style message list
            temperature: Creativity (0-1)
            max_tokens: Maximum tokens in response
            json_mode: Ask for a JSON object only

        Returns:
            LLMResponse object
        """
        return self._provider.chat(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return self._provider_name
