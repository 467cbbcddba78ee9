"""Test doubles: a scripted LLM provider, a static grouper and draft builders."""

from __future__ import annotations

import json
import re
from collections.abc import AsyncGenerator, Callable
from typing import Any

from storeforge.agents.base import AgentDeps
from storeforge.agents.schemas import ProductDraft
from storeforge.app.config import AgentConfig
from storeforge.llm.base import LLMProvider
from storeforge.llm.models import ModelInfo
from storeforge.llm.provider_factory import ModelSelector
from storeforge.storage.database import DatabaseManager
from storeforge.utils.ids import generate_draft_id

Handler = Callable[[list[dict], str, "list[dict] | None"], Any]

_DELEGATED_CALL = re.compile(r"Use the (\w+) tool with: (\{.*\})\s*$", re.S)

DETAILS_JSON = json.dumps({
    "name": "Classic Hoodie",
    "name_ar": "هودي كلاسيكي",
    "description": "A warm hoodie. Soft fleece inside.",
    "description_ar": "هودي دافئ بقماش ناعم.",
    "category": "Hoodies",
    "category_ar": "هوديز",
    "tags": ["hoodie", "fleece", "streetwear"],
    "ai_confidence": "high",
}, ensure_ascii=False)


# ============================================================================
# Response builders
# ============================================================================


def text_response(content: str, model: str = "fake-model") -> dict:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }


def tool_call_response(*calls: tuple[str, Any], content: str = "") -> dict:
    """Build a response proposing ``(name, arguments)`` tool calls.

    ``arguments`` may be a dict or a raw (possibly invalid) JSON string.
    """
    tool_calls = [
        {
            "id": f"call_{index}_{name}",
            "type": "function",
            "function": {
                "name": name,
                "arguments": args if isinstance(args, str) else json.dumps(args, ensure_ascii=False),
            },
        }
        for index, (name, args) in enumerate(calls)
    ]
    return {
        "model": "fake-model",
        "choices": [{
            "message": {"role": "assistant", "content": content or None, "tool_calls": tool_calls},
            "finish_reason": "tool_calls",
        }],
    }


# ============================================================================
# Transcript helpers
# ============================================================================


def message_text(message: dict) -> str:
    content = message.get("content")
    if isinstance(content, list):
        return "\n".join(part.get("text", "") for part in content if part.get("type") == "text")
    return content or ""


def system_text(messages: list[dict]) -> str:
    return message_text(messages[0]) if messages and messages[0]["role"] == "system" else ""


def tool_outputs(messages: list[dict], name: str | None = None) -> list[Any]:
    return [
        json.loads(m["content"])
        for m in messages
        if m["role"] == "tool" and (name is None or m.get("name") == name)
    ]


def step_index(messages: list[dict]) -> int:
    """Number of tool-calling assistant turns already in the transcript."""
    return sum(1 for m in messages if m["role"] == "assistant" and m.get("tool_calls"))


def delegated_call(messages: list[dict]) -> tuple[str, dict] | None:
    for message in messages:
        if message["role"] != "user":
            continue
        match = _DELEGATED_CALL.search(message_text(message))
        if match:
            return match.group(1), json.loads(match.group(2))
    return None


# ============================================================================
# Providers
# ============================================================================


class FakeProvider(LLMProvider):
    """LLMProvider whose responses come from a handler or a fixed script.

    The handler receives ``(messages, model, tools)`` and returns a
    response dict, a string (wrapped as a text response) or an exception
    instance (raised).
    """

    def __init__(self, handler: Handler | None = None, responses: list[Any] | None = None):
        super().__init__(api_key="test-key", base_url="http://fake.local")
        self.handler = handler
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []
        self.default_model = "fake-model"
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "fake"

    async def complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict:
        self.calls.append({"messages": messages, "model": model, "tools": tools})

        if self.handler is not None:
            result = self.handler(messages, model, tools)
        elif self.responses:
            result = self.responses.pop(0)
        else:
            result = text_response("")

        if isinstance(result, Exception):
            raise result
        if isinstance(result, str):
            return text_response(result, model)
        return result

    async def stream_complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        response = await self.complete(messages, model, temperature, max_tokens)
        yield response["choices"][0]["message"].get("content") or ""

    async def list_models(self, force_refresh: bool = False) -> list[ModelInfo]:
        return [ModelInfo(id="fake-model", name="Fake Model", supports_tools=True)]

    async def close(self) -> None:
        self.closed = True


class StoreBackend:
    """Handler that plays every agent of a turn.

    - the Manager follows ``manager`` (a callable taking the transcript)
    - sub-agents call the tool named in their delegation prompt once, then answer
    - single-shot generation returns ``details`` / ``rewrite`` / category JSON
    """

    def __init__(
        self,
        manager: Callable[[list[dict]], Any] | None = None,
        details: Any = DETAILS_JSON,
        rewrite: Any = "Cozy Fleece Hoodie",
        sub_agent: Callable[[list[dict]], Any] | None = None,
    ):
        self.manager = manager
        self.details = details
        self.rewrite = rewrite
        self.sub_agent = sub_agent
        self.detail_calls = 0

    def __call__(self, messages: list[dict], model: str, tools: list[dict] | None) -> Any:
        if tools is None:
            prompt = message_text(messages[-1])
            if prompt.startswith("You are a product copywriter expert for"):
                self.detail_calls += 1
                return self.details
            if prompt.startswith("You are a product copywriter expert. Rewrite"):
                return self.rewrite
            if prompt.startswith("Pick the best categories"):
                return '{"primary": "hoodies", "secondary": ["Jackets", "Spaceships"]}'
            raise AssertionError(f"Unexpected single-shot prompt: {prompt[:80]}")

        if system_text(messages).startswith("You are the AI Manager"):
            if self.manager is None:
                return text_response("How can I help with your store today?")
            return self.manager(messages)

        if self.sub_agent is not None:
            return self.sub_agent(messages)
        return follow_delegation(messages)


def follow_delegation(messages: list[dict]) -> dict:
    """Sub-agent behaviour: call the delegated tool once, then summarize."""
    if tool_outputs(messages):
        return text_response("Done.")
    call = delegated_call(messages)
    if call is None:
        return text_response("Nothing to do.")
    return tool_call_response(call)


# ============================================================================
# Groupers and fixtures
# ============================================================================


class StaticGrouper:
    """ImageGrouper returning fixed raw groups."""

    def __init__(self, groups: list[dict[str, Any]]):
        self.groups = groups
        self.calls: list[list[str]] = []

    async def group(self, image_urls: list[str], store_type: str = "clothing") -> list[dict[str, Any]]:
        self.calls.append(list(image_urls))
        return [dict(g) for g in self.groups]


def make_deps(
    provider: LLMProvider,
    db: DatabaseManager,
    config: AgentConfig | None = None,
    action_logger: Any = None,
) -> AgentDeps:
    return AgentDeps(
        provider=provider,
        models=ModelSelector(fast="fake-fast", pro="fake-pro"),
        db=db,
        config=config or AgentConfig(),
        action_logger=action_logger,
    )


def make_draft(
    merchant_id: str = "m1",
    store_id: str = "s1",
    image_urls: list[str] | None = None,
    **fields: Any,
) -> ProductDraft:
    image_urls = image_urls or ["https://img.test/a.jpg", "https://img.test/b.jpg"]
    data = {
        "id": generate_draft_id(),
        "store_id": store_id,
        "merchant_id": merchant_id,
        "name": "Black Hoodie",
        "name_ar": "هودي أسود",
        "description": "A black hoodie.",
        "description_ar": "هودي أسود مريح.",
        "category": "Hoodies",
        "category_ar": "هوديز",
        "tags": ["hoodie"],
        "image_urls": image_urls,
        "primary_image_url": image_urls[0],
        "ai_confidence": "medium",
    }
    data.update(fields)
    return ProductDraft(**data)
