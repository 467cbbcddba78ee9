"""
Provider factory and model tiers for StoreForge.

Centralizes provider creation from configuration/environment and maps
the two model tiers (fast, pro) onto concrete model names.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv

from storeforge.app.config import LLMConfig
from storeforge.llm.base import LLMProvider
from storeforge.llm.openrouter_provider import OpenRouterProvider
from storeforge.utils.logging import get_logger

load_dotenv()

logger = get_logger("llm.factory")


# ============================================================================
# Provider Types
# ============================================================================


class ProviderType(str, Enum):
    """Supported provider types. All speak the OpenAI chat-completions API."""
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    LM_STUDIO = "lm_studio"


PROVIDER_ENV_MAP: dict[str, dict[str, str]] = {
    ProviderType.OPENROUTER.value: {
        "api_key": "OPENROUTER_API_KEY",
        "base_url": "OPENROUTER_BASE_URL",
    },
    ProviderType.OPENAI.value: {
        "api_key": "OPENAI_API_KEY",
        "base_url": "OPENAI_BASE_URL",
    },
    ProviderType.LM_STUDIO.value: {
        "api_key": "LM_STUDIO_API_KEY",
        "base_url": "LM_STUDIO_BASE_URL",
    },
}

DEFAULT_BASE_URLS: dict[str, str] = {
    ProviderType.OPENROUTER.value: OpenRouterProvider.DEFAULT_BASE_URL,
    ProviderType.OPENAI.value: "https://api.openai.com/v1",
    ProviderType.LM_STUDIO.value: "http://localhost:1234/v1",
}


# ============================================================================
# Model Tiers
# ============================================================================


class ModelTier(str, Enum):
    """Model quality tiers.

    FAST: vision grouping, editing, small classification calls.
    PRO: orchestration and bilingual copy generation.
    """
    FAST = "fast"
    PRO = "pro"


@dataclass(frozen=True)
class ModelSelector:
    """Resolves a ModelTier to a configured model name."""

    fast: str
    pro: str

    def for_tier(self, tier: ModelTier) -> str:
        return self.fast if tier == ModelTier.FAST else self.pro

    @classmethod
    def from_config(cls, config: LLMConfig) -> "ModelSelector":
        return cls(fast=config.fast_model, pro=config.pro_model)


# ============================================================================
# Provider Factory
# ============================================================================


class ProviderFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(
        provider_type: ProviderType | str,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        app_name: str = "StoreForge",
    ) -> LLMProvider:
        """Create a provider instance.

        Raises:
            ValueError: If provider_type is not supported or no API key is available
        """
        if isinstance(provider_type, str):
            try:
                provider_type = ProviderType(provider_type.strip().lower().replace("-", "_"))
            except ValueError:
                raise ValueError(
                    f"Unsupported provider type: {provider_type}. "
                    f"Supported: {[p.value for p in ProviderType]}"
                ) from None

        env_map = PROVIDER_ENV_MAP[provider_type.value]
        api_key = api_key or os.getenv(env_map["api_key"])
        base_url = base_url or os.getenv(env_map["base_url"]) or DEFAULT_BASE_URLS[provider_type.value]

        if not api_key:
            if provider_type == ProviderType.LM_STUDIO:
                api_key = "not-needed"
            else:
                raise ValueError(f"{env_map['api_key']} not provided and not found in environment")

        logger.info(f"Creating provider '{provider_type.value}' at {base_url}")
        return OpenRouterProvider(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            app_name=app_name,
            provider_name=provider_type.value,
        )

    @staticmethod
    def from_config(config: LLMConfig) -> tuple[LLMProvider, ModelSelector]:
        """Create the provider and tier selector described by an LLMConfig."""
        provider = ProviderFactory.create(
            config.provider,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
        )
        selector = ModelSelector.from_config(config)
        provider.default_model = selector.pro
        return provider, selector
