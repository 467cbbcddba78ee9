"""
LLM provider layer.

OpenAI-compatible providers, message/response models, model tiers and
request rate limiting.
"""

from storeforge.llm.base import (
    AuthenticationError,
    LLMError,
    LLMProvider,
    ModelNotFoundError,
    RateLimitError,
)
from storeforge.llm.models import LLMMessage, LLMResponse, MessageRole, ToolCall
from storeforge.llm.provider_factory import ModelSelector, ModelTier, ProviderFactory

__all__ = [
    "AuthenticationError",
    "LLMError",
    "LLMProvider",
    "ModelNotFoundError",
    "RateLimitError",
    "LLMMessage",
    "LLMResponse",
    "MessageRole",
    "ToolCall",
    "ModelSelector",
    "ModelTier",
    "ProviderFactory",
]
