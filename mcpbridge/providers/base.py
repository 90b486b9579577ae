"""
MCP Bridge Provider Base - Chat providers with function-tool support.

This module defines the interface that all LLM providers must implement,
the response types the bridge consumes, and a factory for creating
provider instances from the ``llm`` configuration section.
"""

import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from mcpbridge.validation.config import LLMConfig

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A function call requested by the model. ``arguments`` is JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        """Parse an OpenAI- or Ollama-style ``tool_calls`` entry."""
        function = data.get("function") or {}
        arguments = function.get("arguments")
        if arguments is None:
            arguments = "{}"
        elif not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            name=function.get("name", ""),
            arguments=arguments,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ModelResponse:
    """Response from an LLM provider."""

    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    model: str = ""
    provider: str = ""
    token_usage: int = 0
    finish_reason: str = "stop"

    @property
    def is_tool_call(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Dict[str, Any]:
        """The assistant turn as it should be recorded in the history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        return message


def parse_chat_completion(data: Dict[str, Any], provider: str, default_model: str = "") -> ModelResponse:
    """Build a ModelResponse from an OpenAI-style chat completion body."""
    choice = data["choices"][0]
    message = choice.get("message") or {}
    usage = data.get("usage") or {}
    return ModelResponse(
        content=message.get("content") or "",
        tool_calls=[ToolCall.from_dict(tc) for tc in message.get("tool_calls") or []],
        model=data.get("model", default_model),
        provider=provider,
        token_usage=usage.get("total_tokens", 0),
        finish_reason=choice.get("finish_reason") or "stop",
    )


class ChatProvider(ABC):
    """
    Abstract base class for LLM providers.

    All provider implementations must inherit from this class and
    implement the required methods.

    Example:
        >>> class EchoProvider(ChatProvider):
        ...     provider_name = "echo"
        ...     def chat(self, messages, tools=None):
        ...         return ModelResponse(content=messages[-1]["content"])
        ...     def validate_connection(self):
        ...         return True
    """

    def __init__(self, config: LLMConfig):
        """
        Initialize the provider.

        Args:
            config: The ``llm`` configuration section.
        """
        self.config = config
        self.model = config.model

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelResponse:
        """
        Send a conversation and return the model's next turn.

        Args:
            messages: Role-tagged messages in OpenAI chat format.
            tools: Function-tool definitions the model may call.

        Returns:
            ModelResponse with either content or tool calls.
        """
        pass

    @abstractmethod
    def validate_connection(self) -> bool:
        """
        Validate that the provider connection is working.

        Returns:
            True if connection is valid, False otherwise.
        """
        pass


class OpenAIProvider(ChatProvider):
    """OpenAI API provider implementation."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def _client(self):
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install mcpbridge[openai]")

        if not self.config.api_key:
            raise ValueError("OpenAI API key not configured")
        return openai.OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
        )

    def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelResponse:
        """Generate a chat turn using the OpenAI API."""
        kwargs: Dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        response = self._client().chat.completions.create(
            model=self.model.split("/")[-1],
            messages=messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            **kwargs,
        )
        return parse_chat_completion(response.model_dump(), self.provider_name, self.model)

    def validate_connection(self) -> bool:
        """Validate OpenAI connection."""
        try:
            self._client().models.list()
            return True
        except Exception:
            return False


class OllamaProvider(ChatProvider):
    """Ollama local provider implementation."""

    DEFAULT_BASE_URL = "http://localhost:11434"

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.DEFAULT_BASE_URL).rstrip("/")

    @staticmethod
    def _to_ollama(message: Dict[str, Any]) -> Dict[str, Any]:
        # Ollama wants tool-call arguments as objects, not JSON text.
        if not message.get("tool_calls"):
            return message
        converted = dict(message)
        converted["tool_calls"] = []
        for call in message["tool_calls"]:
            function = dict(call.get("function") or {})
            try:
                function["arguments"] = json.loads(function.get("arguments") or "{}")
            except (TypeError, ValueError):
                function["arguments"] = {}
            converted["tool_calls"].append({"function": function})
        return converted

    def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelResponse:
        """Generate a chat turn using Ollama."""
        import httpx

        payload: Dict[str, Any] = {
            "model": self.model.split("/")[-1],
            "messages": [self._to_ollama(m) for m in messages],
            "stream": False,
            "options": {"temperature": self.config.temperature, "num_predict": self.config.max_tokens},
        }
        if tools:
            payload["tools"] = tools

        response = httpx.post(f"{self.base_url}/api/chat", json=payload, timeout=self.config.timeout)
        response.raise_for_status()
        data = response.json()
        message = data.get("message") or {}

        return ModelResponse(
            content=message.get("content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in message.get("tool_calls") or []],
            model=data.get("model", self.model),
            provider=self.provider_name,
            token_usage=data.get("eval_count", 0),
            finish_reason=data.get("done_reason") or "stop",
        )

    def validate_connection(self) -> bool:
        """Validate Ollama connection."""
        try:
            import httpx

            response = httpx.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except Exception:
            return False


class OpenAICompatibleProvider(ChatProvider):
    """
    Base for providers that expose an OpenAI-compatible chat completions API.

    Subclasses only need to set _base_url, _env_key, and provider_name. Used
    directly (provider ``openai-compatible``) it talks to ``llm.base_url``,
    e.g. a local llama.cpp or LM Studio server.
    """

    _base_url: str = ""
    _env_key: str = ""

    @property
    def provider_name(self) -> str:
        return "openai-compatible"

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self._base_url).rstrip("/")

    def _get_key(self) -> Optional[str]:
        if self.config.api_key:
            return self.config.api_key
        return os.environ.get(self._env_key) if self._env_key else None

    def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ModelResponse:
        import httpx

        if not self.base_url:
            raise ValueError(f"{self.provider_name}: llm.base_url is not configured")

        api_key = self._get_key()
        if self._env_key and not api_key:
            raise ValueError(
                f"{self.provider_name} API key not configured. "
                f"Set {self._env_key} or add it to config."
            )

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        response = httpx.post(
            f"{self.base_url}/chat/completions",
            headers=headers,
            json=payload,
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        return parse_chat_completion(response.json(), self.provider_name, self.model)

    def validate_connection(self) -> bool:
        try:
            return bool(self.base_url) and (not self._env_key or self._get_key() is not None)
        except Exception:
            return False


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter - unified API for 100+ open and commercial models."""

    _base_url = "https://openrouter.ai/api/v1"
    _env_key = "OPENROUTER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI - fast inference for open-source models."""

    _base_url = "https://api.together.xyz/v1"
    _env_key = "TOGETHER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    """Groq - ultra-fast inference for open models."""

    _base_url = "https://api.groq.com/openai/v1"
    _env_key = "GROQ_API_KEY"

    @property
    def provider_name(self) -> str:
        return "groq"


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[ChatProvider]] = {
        "openai": OpenAIProvider,
        "ollama": OllamaProvider,
        "openai-compatible": OpenAICompatibleProvider,
        "openrouter": OpenRouterProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
    }

    @classmethod
    def create(cls, config: LLMConfig) -> ChatProvider:
        """
        Create a provider instance for the ``llm`` configuration.

        Raises:
            ValueError: If the provider is not recognized.
        """
        if config.provider not in cls._providers:
            raise ValueError(f"Unknown provider: {config.provider}")
        logger.debug("Creating %s provider for model %s", config.provider, config.model)
        return cls._providers[config.provider](config)

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
