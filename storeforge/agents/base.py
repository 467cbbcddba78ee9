"""
Base Agent Framework for StoreForge.

Sub-agents are narrow, independently bounded tool loops. Each call to
``run`` builds a fresh ``AgentRuntime`` with its own transcript, so a
sub-agent shares nothing with its caller except the returned result.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from storeforge.agents.errors import ParseFailure
from storeforge.agents.prompts import PromptManager, get_prompt_manager
from storeforge.agents.runtime import ActionLogger, AgentRuntime, AgentTool, RunResult, step_count_is
from storeforge.app.config import AgentConfig
from storeforge.llm.base import LLMProvider
from storeforge.llm.provider_factory import ModelSelector, ModelTier
from storeforge.storage.database import DatabaseManager
from storeforge.utils.logging import get_logger

logger = get_logger("agents.base")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

STORE_LABELS = {
    "clothing": "fashion/streetwear",
    "car_care": "car care",
}


# ============================================================================
# Agent Roles
# ============================================================================


class AgentRole(str, Enum):
    """Agent names as they appear in logs and step updates."""

    MANAGER = "manager"
    VISION = "vision"
    PRODUCT_INTEL = "product_intel"
    EDITING = "editing"
    IMAGE_EDIT = "image_edit"


# ============================================================================
# Dependencies
# ============================================================================


@dataclass
class AgentDeps:
    """Collaborators shared by every agent built for one request."""

    provider: LLMProvider
    models: ModelSelector
    db: DatabaseManager
    config: AgentConfig
    prompts: PromptManager | None = None
    action_logger: ActionLogger | None = None

    def __post_init__(self):
        if self.prompts is None:
            self.prompts = get_prompt_manager()


# ============================================================================
# Structured Output
# ============================================================================


def extract_json(text: str) -> dict[str, Any]:
    """Pull the outermost JSON object out of model text.

    Raises:
        ParseFailure: If no JSON object can be decoded
    """
    match = _JSON_OBJECT.search(text or "")
    if match is None:
        raise ParseFailure("No JSON object found in model output")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Invalid JSON in model output: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure("Model output JSON is not an object")
    return data


# ============================================================================
# Base Sub-Agent
# ============================================================================


class SubAgent(ABC):
    """Base class for delegated agents.

    Subclasses declare their role, model tier, instructions and tools.

    Usage:
        class VisionAgent(SubAgent):
            role = AgentRole.VISION

            def get_instructions(self) -> str:
                return self.prompts.render("vision.instructions")

            def build_tools(self) -> list[AgentTool]:
                return [ExecutableTool(...)]
    """

    role: AgentRole
    tier: ModelTier = ModelTier.FAST

    def __init__(self, deps: AgentDeps):
        self.deps = deps

    @property
    def provider(self) -> LLMProvider:
        return self.deps.provider

    @property
    def db(self) -> DatabaseManager:
        return self.deps.db

    @property
    def prompts(self) -> PromptManager:
        return self.deps.prompts

    @property
    def max_steps(self) -> int:
        return getattr(self.deps.config, f"{self.role.value}_max_steps")

    def model_for(self, tier: ModelTier) -> str:
        return self.deps.models.for_tier(tier)

    @abstractmethod
    def get_instructions(self) -> str:
        ...

    @abstractmethod
    def build_tools(self) -> list[AgentTool]:
        ...

    def create_runtime(self) -> AgentRuntime:
        return AgentRuntime(
            provider=self.provider,
            model=self.model_for(self.tier),
            instructions=self.get_instructions(),
            tools=self.build_tools(),
            stop_when=step_count_is(self.max_steps),
            name=self.role.value,
            action_logger=self.deps.action_logger,
        )

    async def run(self, prompt: str) -> RunResult:
        """Run one isolated delegation."""
        logger.info(f"[{self.role.value}] delegated run started")
        return await self.create_runtime().run(prompt)

    async def _generate(
        self,
        prompt: str | list[dict[str, Any]],
        tier: ModelTier,
        max_tokens: int | None = None,
        temperature: float = 0.4,
    ) -> str:
        """Single-shot generation outside the tool loop.

        Raises:
            LLMError: If the provider call fails
        """
        return await self.provider.complete_simple(
            prompt,
            model=self.model_for(tier),
            temperature=temperature,
            max_tokens=max_tokens,
        )
