"""
Editing Agent.

Suggests rewrites of product names and descriptions. ``rewrite_text``
never writes anything; changes reach a draft only through
``update_draft``, which this agent is given only when built with write
permission.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from storeforge.agents.base import AgentDeps, AgentRole, SubAgent
from storeforge.agents.runtime import AgentTool, ExecutableTool
from storeforge.agents.schemas import AgentContext, Locale
from storeforge.llm.base import LLMError
from storeforge.llm.provider_factory import ModelTier
from storeforge.tools.drafts import DraftTools, UpdateDraftInput
from storeforge.utils.logging import get_logger

logger = get_logger("agents.editing")

LANGUAGE_NAMES = {"en": "English", "ar": "Arabic"}


class RewriteTextInput(BaseModel):
    text: str = Field(min_length=1, description="Text to rewrite")
    instruction: str = Field(
        min_length=1,
        description="How to rewrite it, e.g. 'make it shorter' or 'more casual'",
    )
    field: str = Field(pattern="^(name|description)$", description="name or description")
    locale: Locale = Field(description="Language of the text")


class EditingAgent(SubAgent):
    """Proposes alternative phrasings for draft copy."""

    role = AgentRole.EDITING
    tier = ModelTier.FAST

    def __init__(self, deps: AgentDeps, context: AgentContext, allow_writes: bool = False):
        super().__init__(deps)
        self.context = context
        self.allow_writes = allow_writes
        self.drafts = DraftTools(deps.db, context.merchant_id, context.store_id)

    def get_instructions(self) -> str:
        return self.prompts.render("editing.instructions", allow_writes=self.allow_writes)

    def build_tools(self) -> list[AgentTool]:
        tools: list[AgentTool] = [
            ExecutableTool(
                name="rewrite_text",
                description="Rewrite a product name or description. Returns the suggestion without saving it.",
                input_model=RewriteTextInput,
                execute=self._rewrite_tool,
            ),
        ]
        if self.allow_writes:
            tools.append(ExecutableTool(
                name="update_draft",
                description="Save a new value for one field of a draft.",
                input_model=UpdateDraftInput,
                execute=self.drafts.update_draft_tool,
            ))
        return tools

    async def _rewrite_tool(self, args: RewriteTextInput) -> dict[str, Any]:
        return await self.rewrite_text(args.text, args.instruction, args.field, args.locale)

    async def rewrite_text(self, text: str, instruction: str, field: str, locale: Locale) -> dict[str, Any]:
        """Return ``{original, rewritten, ...}``. On model failure the original is echoed back."""
        prompt = self.prompts.render(
            "editing.rewrite",
            field=field,
            text=text,
            language=LANGUAGE_NAMES[locale],
            instruction=instruction,
        )
        result: dict[str, Any] = {
            "original": text,
            "field": field,
            "locale": locale,
            "instruction": instruction,
        }

        try:
            rewritten = (await self._generate(
                prompt,
                tier=ModelTier.FAST,
                max_tokens=50 if field == "name" else 200,
            )).strip().strip('"')
        except LLMError as e:
            logger.warning(f"rewrite_text failed, returning original: {e}")
            return {**result, "rewritten": text, "confidence": "low", "error": str(e)}

        return {
            **result,
            "rewritten": rewritten or text,
            "confidence": "high" if rewritten else "low",
        }
