"""
Data models for LLM interactions in StoreForge.

Message types (including tool calls and image parts), model
information, and parsed completion responses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ============================================================================
# Message Types
# ============================================================================


class MessageRole(str, Enum):
    """Message role in a chat transcript."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool invocation proposed by the model.

    ``arguments`` holds the decoded JSON object. When the model emitted
    arguments that are not a JSON object, ``arguments`` is empty and
    ``parse_error`` describes the problem.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""
    parse_error: str | None = None

    def to_api_format(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.raw_arguments or json.dumps(self.arguments),
            },
        }

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function", {})
        raw = function.get("arguments") or "{}"
        arguments: dict[str, Any] = {}
        parse_error = None

        if isinstance(raw, dict):
            arguments = raw
            raw = json.dumps(raw)
        else:
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError as e:
                parse_error = f"Tool arguments are not valid JSON: {e}"
            else:
                if isinstance(decoded, dict):
                    arguments = decoded
                else:
                    parse_error = "Tool arguments must be a JSON object"

        return cls(
            id=data.get("id", ""),
            name=function.get("name", ""),
            arguments=arguments,
            raw_arguments=raw,
            parse_error=parse_error,
        )


@dataclass
class LLMMessage:
    """A single chat message in OpenAI-compatible shape.

    ``content`` is either plain text or a list of content parts
    (text and ``image_url`` parts for multimodal prompts).
    """

    role: MessageRole = MessageRole.USER
    content: str | list[dict[str, Any]] | None = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    def to_api_format(self) -> dict[str, Any]:
        """Convert to OpenAI-compatible API format."""
        message: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_api_format() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            message["name"] = self.name
        return message

    @classmethod
    def system(cls, content: str) -> "LLMMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str | list[dict[str, Any]]) -> "LLMMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: list[ToolCall] | None = None) -> "LLMMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, tool_call_id: str, name: str, payload: Any) -> "LLMMessage":
        return cls(
            role=MessageRole.TOOL,
            content=json.dumps(payload, ensure_ascii=False, default=str),
            tool_call_id=tool_call_id,
            name=name,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMMessage":
        """Create from a ``{"role", "content"}`` history entry."""
        return cls(
            role=MessageRole(data.get("role", "user")),
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_api_response(c) for c in data.get("tool_calls", [])],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


def image_parts(text: str, image_urls: list[str]) -> list[dict[str, Any]]:
    """Build multimodal content parts: one text part followed by images."""
    parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
    parts.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
    return parts


# ============================================================================
# Model Information
# ============================================================================


@dataclass
class ModelInfo:
    """LLM model information as reported by the provider's model list."""

    id: str = ""
    name: str = ""
    context_length: int = 0
    supports_tools: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ModelInfo":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", data.get("id", "")),
            context_length=data.get("context_length", 0) or 0,
            supports_tools="tools" in (data.get("supported_parameters") or []),
        )


# ============================================================================
# Response Types
# ============================================================================


@dataclass
class LLMResponse:
    """Parsed response from a chat completion."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    tokens_prompt: int = 0
    tokens_completion: int = 0
    finish_reason: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.tokens_prompt + self.tokens_completion

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "LLMResponse":
        """Create from OpenAI-compatible API response."""
        content = ""
        tool_calls: list[ToolCall] = []
        finish_reason = ""

        if data.get("choices"):
            choice = data["choices"][0]
            message = choice.get("message", {}) or {}
            content = message.get("content") or ""
            tool_calls = [ToolCall.from_api_response(c) for c in message.get("tool_calls") or []]
            finish_reason = choice.get("finish_reason") or ""

        usage = data.get("usage") or {}

        return cls(
            content=content,
            tool_calls=tool_calls,
            model=data.get("model", ""),
            tokens_prompt=usage.get("prompt_tokens", 0),
            tokens_completion=usage.get("completion_tokens", 0),
            finish_reason=finish_reason,
            raw_response=data,
        )
