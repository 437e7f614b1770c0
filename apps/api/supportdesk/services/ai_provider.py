"""AI Provider abstraction layer.

One ``complete(messages, config)`` call regardless of backing model. Which
backend an organization uses is a compliance setting:

- hosted: Google Gemini API
- enterprise_hosted: Azure OpenAI deployment with zero data retention
- self_hosted: Ollama-compatible endpoint inside the customer's network
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from supportdesk.core.config import settings
from supportdesk.db.enums import AIProviderKind
from supportdesk.services.http_service import ensure_success, request_with_retries

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class CompletionConfig:
    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1024
    json_output: bool = False


@dataclass
class AICompletion:
    """Response from an AI provider."""

    text: str
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""
    provider: str = ""


class AIProviderError(RuntimeError):
    """Provider is unconfigured or returned an unusable response."""


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    kind: AIProviderKind

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS

    @abstractmethod
    async def complete(
        self, messages: list[ChatMessage], config: CompletionConfig | None = None
    ) -> AICompletion:
        """Send a chat completion request."""

    async def _post(self, url: str, **kwargs) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await request_with_retries(lambda: client.post(url, **kwargs))
        return ensure_success(response, self.kind.value)


class HostedProvider(AIProvider):
    """Google Gemini API provider."""

    kind = AIProviderKind.HOSTED

    def __init__(
        self,
        api_key: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
    ):
        super().__init__(timeout)
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.default_model = default_model or settings.GEMINI_MODEL
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def complete(
        self, messages: list[ChatMessage], config: CompletionConfig | None = None
    ) -> AICompletion:
        if not self.api_key:
            raise AIProviderError("GEMINI_API_KEY not configured")
        config = config or CompletionConfig()
        model = config.model or self.default_model

        # Gemini uses 'user' and 'model' roles, system goes in systemInstruction
        system_parts = []
        contents = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append({"text": msg.content})
            else:
                role = "model" if msg.role == "assistant" else "user"
                contents.append({"role": role, "parts": [{"text": msg.content}]})

        generation_config: dict[str, Any] = {
            "temperature": config.temperature,
            "maxOutputTokens": config.max_tokens,
        }
        if config.json_output:
            generation_config["responseMimeType"] = "application/json"
        request_body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_parts:
            request_body["systemInstruction"] = {"parts": system_parts}

        data = await self._post(
            f"{self.base_url}/models/{model}:generateContent",
            params={"key": self.api_key},
            json=request_body,
        )
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise AIProviderError("Gemini response had no candidate text")

        usage = data.get("usageMetadata", {})
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        return AICompletion(
            text=text,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            model=model,
            provider=self.kind.value,
        )


class EnterpriseProvider(AIProvider):
    """Azure OpenAI chat completions (zero-retention deployment)."""

    kind = AIProviderKind.ENTERPRISE_HOSTED

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        deployment: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
    ):
        super().__init__(timeout)
        self.endpoint = (endpoint or settings.AZURE_OPENAI_ENDPOINT).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.AZURE_OPENAI_API_KEY
        self.deployment = deployment or settings.AZURE_OPENAI_DEPLOYMENT
        self.api_version = api_version or settings.AZURE_OPENAI_API_VERSION

    async def complete(
        self, messages: list[ChatMessage], config: CompletionConfig | None = None
    ) -> AICompletion:
        if not (self.endpoint and self.api_key and self.deployment):
            raise AIProviderError("Azure OpenAI endpoint/key/deployment not configured")
        config = config or CompletionConfig()
        deployment = config.model or self.deployment
        body: dict[str, Any] = {
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        if config.json_output:
            body["response_format"] = {"type": "json_object"}

        data = await self._post(
            f"{self.endpoint}/openai/deployments/{deployment}/chat/completions",
            params={"api-version": self.api_version},
            headers={"api-key": self.api_key},
            json=body,
        )
        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise AIProviderError("Azure OpenAI response had no choices")

        usage = data.get("usage", {})
        return AICompletion(
            text=text,
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            },
            model=deployment,
            provider=self.kind.value,
        )


class SelfHostedProvider(AIProvider):
    """Ollama-compatible /api/chat endpoint."""

    kind = AIProviderKind.SELF_HOSTED

    def __init__(
        self,
        base_url: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
    ):
        super().__init__(timeout)
        self.base_url = (base_url or settings.SELF_HOSTED_AI_URL).rstrip("/")
        self.default_model = default_model or settings.SELF_HOSTED_AI_MODEL

    async def complete(
        self, messages: list[ChatMessage], config: CompletionConfig | None = None
    ) -> AICompletion:
        config = config or CompletionConfig()
        model = config.model or self.default_model
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
            },
        }
        if config.json_output:
            body["format"] = "json"

        data = await self._post(f"{self.base_url}/api/chat", json=body)
        message = data.get("message") or {}
        if "content" not in message:
            raise AIProviderError("Self-hosted model response had no message")

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        return AICompletion(
            text=message["content"],
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            model=model,
            provider=self.kind.value,
        )


_PROVIDERS: dict[AIProviderKind, type[AIProvider]] = {
    AIProviderKind.HOSTED: HostedProvider,
    AIProviderKind.ENTERPRISE_HOSTED: EnterpriseProvider,
    AIProviderKind.SELF_HOSTED: SelfHostedProvider,
}


def get_provider(kind: AIProviderKind | str) -> AIProvider:
    """Factory function to get the configured AI provider for a compliance level."""
    try:
        provider_cls = _PROVIDERS[AIProviderKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown provider: {kind}")
    return provider_cls()
