"""
Text Completion Module for Eventsmith.

Provides a small, uniform interface over the completion providers the
extraction cascade talks to. Callers ask for a completion by model hint;
the service routes the hint to a configured client.

Supported providers:
- Groq (hosted, fast free tier)
- Ollama (local, offline)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger

from .errors import CompletionError


SYSTEM_PROMPT = (
    "You extract calendar events from user messages. "
    "Reply with a single JSON object and nothing else."
)


class LLMProvider(Enum):
    """Supported completion providers."""
    GROQ = "groq"
    OLLAMA = "ollama"


@dataclass
class LLMResponse:
    """Response from a completion provider."""
    content: str
    provider: LLMProvider
    model: str
    tokens_used: Optional[int] = None
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class CompletionService(Protocol):
    """What the extraction cascade needs from a completion backend."""

    async def complete(self, model_hint: str, prompt: str) -> str:
        """Return the raw completion text, or raise CompletionError."""
        ...


class BaseLLMClient(ABC):
    """Abstract base class for completion clients."""

    def __init__(
        self,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: int = 30,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    @abstractmethod
    def provider(self) -> LLMProvider:
        """Get the provider type."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is available."""
        pass

    @abstractmethod
    async def agenerate(
        self,
        messages: List[Message],
        **kwargs,
    ) -> LLMResponse:
        """Generate a response asynchronously."""
        pass


class GroqClient(BaseLLMClient):
    """Groq API client."""

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: int = 30,
    ):
        super().__init__(model, temperature, max_tokens, timeout)
        self.api_key = api_key
        self._async_client = None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.GROQ

    def _get_async_client(self):
        if self._async_client is None:
            from groq import AsyncGroq
            self._async_client = AsyncGroq(api_key=self.api_key, timeout=self.timeout)
        return self._async_client

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def agenerate(self, messages: List[Message], **kwargs) -> LLMResponse:
        client = self._get_async_client()

        response = await client.chat.completions.create(
            model=self.model,
            messages=[m.to_dict() for m in messages],
            temperature=kwargs.get("temperature", self.temperature),
            max_tokens=kwargs.get("max_tokens", self.max_tokens),
        )

        return LLMResponse(
            content=response.choices[0].message.content or "",
            provider=self.provider,
            model=self.model,
            tokens_used=response.usage.total_tokens if response.usage else None,
            finish_reason=response.choices[0].finish_reason,
        )


class OllamaClient(BaseLLMClient):
    """Ollama local model client."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: int = 60,
    ):
        super().__init__(model, temperature, max_tokens, timeout)
        self.base_url = base_url
        self._async_client = None
        self._available: Optional[bool] = None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.OLLAMA

    def _get_async_client(self):
        if self._async_client is None:
            from ollama import AsyncClient
            self._async_client = AsyncClient(host=self.base_url, timeout=self.timeout)
        return self._async_client

    def is_available(self) -> bool:
        # Probed once per client; a local server does not come and go per request
        if self._available is None:
            try:
                response = httpx.get(f"{self.base_url}/api/tags", timeout=5)
                self._available = response.status_code == 200
            except httpx.HTTPError as e:
                logger.debug(f"Ollama not reachable at {self.base_url}: {e}")
                self._available = False
        return self._available

    async def agenerate(self, messages: List[Message], **kwargs) -> LLMResponse:
        client = self._get_async_client()

        response = await client.chat(
            model=self.model,
            messages=[m.to_dict() for m in messages],
            options={
                "temperature": kwargs.get("temperature", self.temperature),
                "num_predict": kwargs.get("max_tokens", self.max_tokens),
            },
        )

        return LLMResponse(
            content=response["message"]["content"] or "",
            provider=self.provider,
            model=self.model,
            tokens_used=response.get("eval_count"),
            finish_reason="stop",
        )


class LLMCompletionService:
    """
    Routes completion requests to configured clients by model hint.

    A hint that names a configured model goes to that model's client.
    Unknown hints go to the first available client, so a rotation list
    that mentions models nobody configured still reaches a provider.
    """

    def __init__(self, clients: List[BaseLLMClient]):
        if not clients:
            raise ValueError("At least one LLM client must be provided")
        self.clients = clients
        self._by_model = {c.model: c for c in clients}
        logger.info(f"Completion service initialized with {len(clients)} client(s)")

    def _route(self, model_hint: str) -> BaseLLMClient:
        client = self._by_model.get(model_hint)
        if client is not None and client.is_available():
            return client

        for candidate in self.clients:
            if candidate.is_available():
                if client is None:
                    logger.debug(f"No client for model '{model_hint}', using {candidate.model}")
                return candidate

        raise CompletionError("No completion provider is available")

    async def complete(self, model_hint: str, prompt: str) -> str:
        client = self._route(model_hint)
        messages = [
            Message(role="system", content=SYSTEM_PROMPT),
            Message(role="user", content=prompt),
        ]

        try:
            response = await client.agenerate(messages)
        except Exception as e:
            raise CompletionError(f"{client.provider.value}/{client.model} failed: {e}") from e

        if not response.content or not response.content.strip():
            raise CompletionError(f"Empty response from {client.provider.value}/{client.model}")

        logger.debug(f"Completion from {client.provider.value}/{client.model}: {len(response.content)} chars")
        return response.content


def create_completion_service(
    groq_api_key: Optional[str] = None,
    ollama_base_url: Optional[str] = None,
    models: Optional[List[str]] = None,
    ollama_model: str = "llama3.2",
    **kwargs,
) -> Optional[LLMCompletionService]:
    """
    Factory function to create a completion service with configured clients.

    Args:
        groq_api_key: Groq API key; one Groq client is created per model.
        ollama_base_url: Ollama server URL; enables a local client.
        models: Model identifiers to create Groq clients for.
        ollama_model: Model served by Ollama.
        **kwargs: temperature, max_tokens and timeout overrides.

    Returns:
        A completion service, or None when no provider is configured.
    """
    clients: List[BaseLLMClient] = []
    models = models or ["llama-3.3-70b-versatile"]

    if groq_api_key:
        for model in models:
            if model == ollama_model and ollama_base_url:
                continue
            clients.append(GroqClient(
                api_key=groq_api_key,
                model=model,
                temperature=kwargs.get("temperature", 0.1),
                max_tokens=kwargs.get("max_tokens", 1024),
                timeout=kwargs.get("timeout", 30),
            ))
        logger.info(f"Groq configured for {len(clients)} model(s)")

    if ollama_base_url:
        clients.append(OllamaClient(
            model=ollama_model,
            base_url=ollama_base_url,
            temperature=kwargs.get("temperature", 0.1),
            max_tokens=kwargs.get("max_tokens", 1024),
            timeout=kwargs.get("ollama_timeout", 60),
        ))
        logger.info(f"Ollama configured at {ollama_base_url}")

    if not clients:
        logger.warning("No completion provider configured; extraction will use the rule-based fallback")
        return None

    return LLMCompletionService(clients)
