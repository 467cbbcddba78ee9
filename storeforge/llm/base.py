"""
Base classes for LLM providers in StoreForge.

Defines the abstract LLMProvider class and the provider error types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from typing import Any

from storeforge.llm.models import ModelInfo


# ============================================================================
# Exceptions
# ============================================================================


class LLMError(Exception):
    """Base exception for LLM provider errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether resending the same request may succeed."""
        return self.status_code is None or self.status_code >= 500


class AuthenticationError(LLMError):
    """Authentication failed."""

    @property
    def transient(self) -> bool:
        return False


class RateLimitError(LLMError):
    """Rate limit exceeded."""

    @property
    def transient(self) -> bool:
        return True


class ModelNotFoundError(LLMError):
    """Requested model not found."""

    @property
    def transient(self) -> bool:
        return False


# ============================================================================
# Abstract Provider
# ============================================================================


class LLMProvider(ABC):
    """Abstract base class for chat-completion providers.

    Providers speak the OpenAI chat-completions shape: ``complete``
    returns the raw response dict, which callers parse with
    ``LLMResponse.from_api_response``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 60.0,
        app_name: str = "StoreForge",
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.app_name = app_name
        self.default_model: str | None = None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openrouter', 'openai')."""
        ...

    # ========== Chat Completion ==========

    @abstractmethod
    async def complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict:
        """Create a chat completion, optionally offering tools."""
        ...

    @abstractmethod
    async def stream_complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        """Stream a chat completion, yielding content chunks."""
        ...

    async def complete_simple(
        self,
        prompt: str | list[dict[str, Any]],
        model: str | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Single-turn completion returning only the text content."""
        if model is None:
            model = self.default_model
            if model is None:
                raise ValueError("No model specified and no default model set")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self.complete(messages, model, temperature, max_tokens)

        if response.get("choices"):
            return response["choices"][0].get("message", {}).get("content") or ""
        return ""

    # ========== Model Registry ==========

    @abstractmethod
    async def list_models(self, force_refresh: bool = False) -> list[ModelInfo]:
        """List available models."""
        ...

    # ========== Lifecycle ==========

    @abstractmethod
    async def close(self) -> None:
        """Close the provider and release resources."""
        ...

    async def __aenter__(self) -> "LLMProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
