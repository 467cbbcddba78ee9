"""
OpenAI-compatible chat-completions provider for StoreForge.

Talks to OpenRouter by default; the same client serves OpenAI, LM Studio
or any other endpoint exposing ``/chat/completions`` with tool calling.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx
from dotenv import load_dotenv

from storeforge.llm.base import (
    AuthenticationError,
    LLMError,
    LLMProvider,
    ModelNotFoundError,
    RateLimitError,
)
from storeforge.llm.models import ModelInfo
from storeforge.llm.rate_limiter import RateLimiter, get_rate_limiter
from storeforge.utils.logging import get_logger

load_dotenv()

logger = get_logger("llm.openrouter")


class OpenRouterProvider(LLMProvider):
    """OpenAI-compatible API provider.

    Supports non-streaming completions with ``tools`` and streaming text
    completions. Every request is routed through a ``RateLimiter``.
    """

    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        app_name: str = "StoreForge",
        default_model: str | None = None,
        rate_limiter: RateLimiter | None = None,
        provider_name: str = "openrouter",
    ):
        if api_key is None:
            api_key = os.getenv("OPENROUTER_API_KEY")
            if not api_key:
                raise ValueError(
                    "OPENROUTER_API_KEY not provided and not found in environment"
                )

        super().__init__(api_key, base_url, timeout, app_name)
        self.default_model = default_model
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self._provider_name = provider_name
        self._client: httpx.AsyncClient | None = None
        self._models_cache: list[ModelInfo] | None = None
        self._models_cache_time: float = 0
        self._cache_ttl: float = 300.0

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": "https://github.com/storeforge",
            "X-Title": self.app_name,
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(
                    max_connections=100,
                    max_keepalive_connections=20,
                    keepalive_expiry=120.0,
                ),
            )
        return self._client

    def _extract_error_message(self, response: httpx.Response) -> str:
        """Extract a readable message from a JSON, HTML or plain-text error body."""
        try:
            error_data = response.json()
        except (json.JSONDecodeError, ValueError):
            text = response.text or ""
            content_type = response.headers.get("content-type", "").lower()
            if "text/html" in content_type or text.lstrip().startswith(("<!DOCTYPE", "<html")):
                title_match = re.search(r"<title[^>]*>(.*?)</title>", text, re.IGNORECASE | re.DOTALL)
                if title_match:
                    return title_match.group(1).strip()
                return f"HTTP {response.status_code}: Server returned HTML error page"
            return text[:500] or f"HTTP {response.status_code}"

        if isinstance(error_data, dict) and isinstance(error_data.get("error"), dict):
            return error_data["error"].get("message", str(error_data))
        return str(error_data)

    def _handle_error(self, response: httpx.Response) -> None:
        """Map an HTTP error response to the LLMError hierarchy."""
        error_message = self._extract_error_message(response)
        status = response.status_code

        if status == 401:
            raise AuthenticationError(f"Authentication failed: {error_message}", status_code=status)
        if status == 404:
            raise ModelNotFoundError(f"Model not found: {error_message}", status_code=status)
        if status == 429:
            raise RateLimitError(f"Rate limit exceeded: {error_message}", status_code=status)
        raise LLMError(f"API error: {error_message}", status_code=status)

    async def _get(self, endpoint: str, params: dict | None = None) -> dict:
        client = await self._get_client()
        try:
            response = await client.get(endpoint, params=params)
        except httpx.HTTPError as e:
            raise LLMError(f"Transport error: {e}") from e

        if response.status_code >= 400:
            self._handle_error(response)
        return response.json()

    async def _post(self, endpoint: str, data: dict) -> dict:
        client = await self._get_client()
        try:
            response = await client.post(endpoint, json=data)
        except httpx.HTTPError as e:
            raise LLMError(f"Transport error: {e}") from e

        if response.status_code >= 400:
            self._handle_error(response)
        return response.json()

    # ========== Chat Completion ==========

    async def complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict:
        """Create a chat completion."""
        data: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            data["max_tokens"] = max_tokens
        if tools:
            data["tools"] = tools
            data["tool_choice"] = "auto"

        logger.debug(f"complete: model='{model}', messages={len(messages)}, tools={len(tools or [])}")

        response = await self.rate_limiter.execute_with_retry(
            lambda: self._post("/chat/completions", data)
        )

        response_model = response.get("model", "N/A")
        if response_model != model:
            logger.debug(f"complete: requested '{model}', served by '{response_model}'")
        return response

    async def stream_complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        """Stream a chat completion, yielding content chunks."""
        data: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        if max_tokens:
            data["max_tokens"] = max_tokens

        client = await self._get_client()
        async with client.stream("POST", "/chat/completions", json=data) as response:
            if response.status_code >= 400:
                await response.aread()
                self._handle_error(response)

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                payload = line[6:]
                if payload.strip() == "[DONE]":
                    break
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    continue
                if chunk.get("choices"):
                    content = chunk["choices"][0].get("delta", {}).get("content")
                    if content:
                        yield content

    # ========== Model Registry ==========

    async def list_models(self, force_refresh: bool = False) -> list[ModelInfo]:
        """List available models with a short-lived cache."""
        current_time = time.time()
        if (
            not force_refresh
            and self._models_cache is not None
            and (current_time - self._models_cache_time) < self._cache_ttl
        ):
            return self._models_cache

        response = await self._get("/models")
        self._models_cache = [ModelInfo.from_api_response(m) for m in response.get("data", [])]
        self._models_cache_time = current_time
        return self._models_cache

    # ========== Lifecycle ==========

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
