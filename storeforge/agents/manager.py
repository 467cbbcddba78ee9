"""
Manager Orchestrator.

The single entry point for a user turn. The Manager reasons over the
conversation with the pro model tier and acts only through tools:

- delegation tools, each running one sub-agent in its own isolated
  runtime and returning that agent's structured result
- draft tools (update, discard, render cards)
- ``ask_user``, the pause tool that hands control back to the user
- ``confirm_and_persist``, which only works when the turn carries a
  ``ConfirmationGrant`` from a previous persist question
- ``send_ui_command`` for client-side navigation and notifications

Each tool call emits an executing step through the ``StepEmitter``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from storeforge.agents.base import STORE_LABELS, AgentDeps, AgentRole, SubAgent
from storeforge.agents.editing import LANGUAGE_NAMES, EditingAgent
from storeforge.agents.errors import ModelInvocationError
from storeforge.agents.image_edit import ImageEditAgent
from storeforge.agents.product_intel import ProductIntelAgent
from storeforge.agents.runtime import AgentTool, ExecutableTool, PauseRequest, PauseTool, RunResult
from storeforge.agents.schemas import AgentContext, ConfirmationGrant, ImageGroup, Locale
from storeforge.agents.vision import AnalyzeImagesInput, VisionAgent
from storeforge.llm.models import LLMMessage
from storeforge.llm.provider_factory import ModelTier
from storeforge.services.grouping import ImageGrouper
from storeforge.services.pricing import PricingService
from storeforge.streaming.steps import BulkProgressTracker, StepEmitter, UICommand
from storeforge.tools.drafts import DraftTools, RenderDraftCardsInput, UpdateDraftInput
from storeforge.tools.persistence import ConfirmAndPersistInput, DiscardDraftsInput, PersistenceGate
from storeforge.utils.logging import get_logger, log_error, log_operation

logger = get_logger("agents.manager")

ONBOARDING_STAGES = [
    "image_upload",
    "vision_analysis",
    "group_confirmation",
    "product_generation",
    "draft_preview",
    "draft_editing",
    "persistence",
]

# tool name -> (active agent, step message)
STEP_LABELS: dict[str, tuple[str | None, str]] = {
    "delegate_to_vision": (AgentRole.VISION.value, "Grouping your images..."),
    "delegate_to_product_intel": (AgentRole.PRODUCT_INTEL.value, "Generating product details..."),
    "delegate_to_editor": (AgentRole.EDITING.value, "Rewriting text..."),
    "delegate_to_image_editor": (AgentRole.IMAGE_EDIT.value, "Editing images..."),
    "update_draft": (None, "Updating draft..."),
    "discard_drafts": (None, "Discarding drafts..."),
    "render_draft_cards": (None, "Loading drafts..."),
    "confirm_and_persist": (None, "Saving products to your store..."),
}


# ============================================================================
# Tool Inputs
# ============================================================================


class DelegateVisionInput(BaseModel):
    image_urls: list[str] = Field(min_length=1, description="Uploaded image URLs")
    batch_id: Optional[str] = None


class DelegateProductIntelInput(BaseModel):
    groups: list[ImageGroup] = Field(min_length=1, description="Confirmed image groups from vision")
    batch_id: Optional[str] = None

    @model_validator(mode="after")
    def _unique_group_ids(self) -> "DelegateProductIntelInput":
        ids = [g.id for g in self.groups]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"group ids must be unique, repeated: {', '.join(duplicates)}")
        return self


class DelegateEditorInput(BaseModel):
    text: str = Field(min_length=1)
    instruction: str = Field(min_length=1)
    field: Literal["name", "description"]
    locale: Optional[Locale] = Field(default=None, description="Language of the text; defaults to the store locale")


class DelegateImageEditorInput(BaseModel):
    draft_id: str = Field(min_length=1)
    instruction: str = Field(min_length=1, description="What to change, e.g. 'use the second photo as main image'")


class AskUserInput(BaseModel):
    question: str = Field(min_length=1)
    options: list[str] = Field(default_factory=list, max_length=4)
    intent: Literal["general", "persist"] = Field(
        default="general",
        description="Use 'persist' only when asking for final approval to save drafts",
    )
    draft_ids: Optional[list[str]] = Field(default=None, description="Drafts the persist question is about")


class SendUICommandInput(BaseModel):
    type: Literal["navigate", "notification", "modal", "bulk_flow"]
    action: Optional[str] = None
    path: Optional[str] = None
    message: Optional[str] = None
    variant: Optional[Literal["info", "success", "warning", "error"]] = None
    params: Optional[dict[str, Any]] = None


# ============================================================================
# Turn Result
# ============================================================================


@dataclass
class ManagerTurn:
    result: RunResult
    ui_commands: list[UICommand] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.result.text

    @property
    def pause(self) -> PauseRequest | None:
        return self.result.pause

    def tool_invocations(self) -> list[dict[str, Any]]:
        return [
            {
                "tool_name": r.tool_name,
                "args": r.args,
                "success": r.success,
                "output": r.output,
                "error": r.error,
            }
            for r in self.result.tool_results
        ]


# ============================================================================
# Manager
# ============================================================================


class ManagerAgent(SubAgent):
    """Top-level orchestrator for one request."""

    role = AgentRole.MANAGER
    tier = ModelTier.PRO

    def __init__(
        self,
        deps: AgentDeps,
        context: AgentContext,
        emitter: StepEmitter | None = None,
        grouper: ImageGrouper | None = None,
        pricing: PricingService | None = None,
        confirmation: ConfirmationGrant | None = None,
    ):
        super().__init__(deps)
        self.context = context
        self.emitter = emitter or StepEmitter()
        self.grouper = grouper
        self.pricing = pricing
        self.confirmation = confirmation
        self.drafts = DraftTools(deps.db, context.merchant_id, context.store_id)
        self.gate = PersistenceGate(deps.db)
        self.ui_commands: list[UICommand] = []

    def get_instructions(self) -> str:
        ctx = self.context
        return self.prompts.render(
            "manager.instructions",
            store_label=STORE_LABELS[ctx.store_type],
            merchant_id=ctx.merchant_id,
            store_id=ctx.store_id,
            locale=ctx.locale,
            store_type=ctx.store_type,
            batch_id=ctx.batch_id,
            onboarding=ctx.is_onboarding,
            onboarding_stages=ONBOARDING_STAGES,
            response_language=LANGUAGE_NAMES[ctx.locale],
        )

    def build_tools(self) -> list[AgentTool]:
        return [
            self._tracked(ExecutableTool(
                name="delegate_to_vision",
                description="Group uploaded product images by product. Run this first for new uploads.",
                input_model=DelegateVisionInput,
                execute=self.delegate_to_vision,
            )),
            self._tracked(ExecutableTool(
                name="delegate_to_product_intel",
                description="Create one bilingual draft per confirmed image group.",
                input_model=DelegateProductIntelInput,
                execute=self.delegate_to_product_intel,
            )),
            self._tracked(ExecutableTool(
                name="delegate_to_editor",
                description="Suggest a rewrite of a product name or description. Does not save anything.",
                input_model=DelegateEditorInput,
                execute=self.delegate_to_editor,
            )),
            self._tracked(ExecutableTool(
                name="delegate_to_image_editor",
                description="Apply an image change to a draft, such as picking another primary image.",
                input_model=DelegateImageEditorInput,
                execute=self.delegate_to_image_editor,
            )),
            self._tracked(ExecutableTool(
                name="update_draft",
                description="Save a new value for one field of a draft.",
                input_model=UpdateDraftInput,
                execute=self.drafts.update_draft_tool,
            )),
            self._tracked(ExecutableTool(
                name="discard_drafts",
                description="Discard drafts the user rejected.",
                input_model=DiscardDraftsInput,
                execute=self._discard_tool,
            )),
            self._tracked(ExecutableTool(
                name="render_draft_cards",
                description="Show drafts to the user as cards.",
                input_model=RenderDraftCardsInput,
                execute=self.drafts.render_draft_cards_tool,
            )),
            self._tracked(ExecutableTool(
                name="confirm_and_persist",
                description=(
                    "Save approved drafts to the store. Only works after the user approved "
                    "them through ask_user with intent 'persist'."
                ),
                input_model=ConfirmAndPersistInput,
                execute=self._persist_tool,
            )),
            ExecutableTool(
                name="send_ui_command",
                description="Ask the client to navigate, show a notification, open a modal or start a bulk flow.",
                input_model=SendUICommandInput,
                execute=self._ui_command_tool,
            ),
            PauseTool(
                name="ask_user",
                description="Ask the user a question and wait for the answer. Use for every decision.",
                input_model=AskUserInput,
            ),
        ]

    def _tracked(self, tool: ExecutableTool) -> ExecutableTool:
        """Wrap a tool so each call emits an executing step first."""
        agent_name, message = STEP_LABELS[tool.name]
        execute = tool.execute

        async def run(args: Any) -> Any:
            self.emitter.executing(message, agent_name=agent_name, action=tool.name)
            return await execute(args)

        return ExecutableTool(tool.name, tool.description, tool.input_model, run)

    async def run_turn(
        self,
        messages: Sequence[dict[str, Any] | LLMMessage],
    ) -> ManagerTurn:
        """Run the Manager over the conversation history.

        Raises:
            ModelInvocationError: If the Manager's own model call fails
        """
        log_operation(logger, "run_turn", {
            "merchant_id": self.context.merchant_id,
            "store_id": self.context.store_id,
            "confirmed": self.confirmation is not None,
        })
        result = await self.create_runtime().run(messages)
        return ManagerTurn(result=result, ui_commands=list(self.ui_commands))

    # ========== Delegation ==========

    def _scoped(self, batch_id: str | None) -> AgentContext:
        if batch_id and batch_id != self.context.batch_id:
            return self.context.model_copy(update={"batch_id": batch_id})
        return self.context

    @staticmethod
    def _successful(result: RunResult | None, tool_name: str) -> list[Any]:
        if result is None:
            return []
        return result.outputs_for(tool_name, successful_only=True)

    async def _delegate(self, agent: SubAgent, prompt: str) -> RunResult | None:
        """Run a sub-agent; a failed model call yields None so the caller can fall back."""
        try:
            return await agent.run(prompt)
        except ModelInvocationError as e:
            log_error(logger, f"delegate.{agent.role.value}", e)
            return None

    async def delegate_to_vision(self, args: DelegateVisionInput) -> dict[str, Any]:
        agent = VisionAgent(self.deps, grouper=self.grouper, store_type=self.context.store_type)
        batch_id = args.batch_id or self.context.batch_id
        tool_input = {"image_urls": args.image_urls, "batch_id": batch_id}
        prompt = self.prompts.render(
            "manager.vision_task",
            image_urls=args.image_urls,
            batch_id=batch_id,
            tool_input=json.dumps(tool_input, ensure_ascii=False),
        )

        outputs = self._successful(await self._delegate(agent, prompt), "analyze_images")
        if outputs:
            output = outputs[-1]
        else:
            logger.warning("Vision agent returned no grouping; grouping directly")
            output = await agent.analyze_images(AnalyzeImagesInput(**tool_input))

        return {**output, "agent": AgentRole.VISION.value}

    async def delegate_to_product_intel(self, args: DelegateProductIntelInput) -> dict[str, Any]:
        """Generate one draft per group in batches of ``bulk_concurrency``."""
        context = self._scoped(args.batch_id)
        groups = args.groups
        tracker = BulkProgressTracker(
            "Generating product drafts",
            [(g.id, g.name) for g in groups],
        )
        width = max(1, self.deps.config.bulk_concurrency)
        outcomes: dict[str, dict[str, Any]] = {}

        async def process(index: int, group: ImageGroup) -> None:
            tracker.mark(group.id, "updating")
            try:
                output = await self._generate_one(context, group, index)
            except Exception as e:
                log_error(logger, "delegate_to_product_intel", e, {"group_id": group.id})
                outcomes[group.id] = {"success": False, "group_id": group.id, "error": str(e)}
                snapshot = tracker.mark(group.id, "failed", str(e))
                message = f"Failed: {group.name}"
            else:
                outcomes[group.id] = output
                snapshot = tracker.mark(group.id, "done")
                message = f"Created draft {snapshot.current}/{snapshot.total}: {group.name}"

            self.emitter.executing(
                message,
                agent_name=AgentRole.PRODUCT_INTEL.value,
                action="generate_product_details",
                bulk_progress=snapshot,
            )

        indexed = list(enumerate(groups))
        for start in range(0, len(indexed), width):
            batch = indexed[start:start + width]
            await asyncio.gather(*(process(index, group) for index, group in batch))

        results = [outcomes[g.id] for g in groups]
        created = [r for r in results if r.get("success")]
        log_operation(logger, "delegate_to_product_intel", {
            "groups": len(groups),
            "created": len(created),
            "batch_id": context.batch_id,
        })

        return {
            "success": bool(created),
            "agent": AgentRole.PRODUCT_INTEL.value,
            "batch_id": context.batch_id,
            "draft_ids": [r["draft_id"] for r in created],
            "drafts": [r["details"] for r in created],
            "created_count": len(created),
            "failed_count": len(results) - len(created),
            "fallback_count": sum(1 for r in created if r.get("fallback")),
            "failed_groups": [r["group_id"] for r in results if not r.get("success")],
        }

    async def _generate_one(self, context: AgentContext, group: ImageGroup, index: int) -> dict[str, Any]:
        agent = ProductIntelAgent(self.deps, context, pricing=self.pricing)
        tool_input = {"group": group.model_dump(mode="json"), "group_index": index}
        prompt = self.prompts.render(
            "manager.product_intel_task",
            group=group,
            store_type=context.store_type,
            locale=context.locale,
            group_index=index,
            tool_input=json.dumps(tool_input, ensure_ascii=False),
        )

        for output in self._successful(await self._delegate(agent, prompt), "generate_product_details"):
            if output.get("group_id") == group.id:
                return output

        logger.warning(f"Product intel agent produced no draft for {group.id}; generating directly")
        return await agent.generate_product_details(
            group=group,
            locale=context.locale,
            store_type=context.store_type,
            store_id=context.store_id,
            merchant_id=context.merchant_id,
            batch_id=context.batch_id,
            group_index=index,
        )

    async def delegate_to_editor(self, args: DelegateEditorInput) -> dict[str, Any]:
        agent = EditingAgent(self.deps, self.context, allow_writes=False)
        locale = args.locale or self.context.locale
        tool_input = {"text": args.text, "instruction": args.instruction, "field": args.field, "locale": locale}
        prompt = self.prompts.render(
            "manager.editor_task",
            field=args.field,
            language=LANGUAGE_NAMES[locale],
            text=args.text,
            instruction=args.instruction,
            tool_input=json.dumps(tool_input, ensure_ascii=False),
        )

        outputs = self._successful(await self._delegate(agent, prompt), "rewrite_text")
        output = outputs[-1] if outputs else await agent.rewrite_text(**tool_input)
        return {"success": True, "agent": AgentRole.EDITING.value, **output}

    async def delegate_to_image_editor(self, args: DelegateImageEditorInput) -> dict[str, Any]:
        draft = self.db.get_draft(args.draft_id, self.context.merchant_id, self.context.store_id)
        if draft is None:
            return {"success": False, "agent": AgentRole.IMAGE_EDIT.value, "error": "Draft not found"}

        agent = ImageEditAgent(self.deps, self.context)
        prompt = self.prompts.render(
            "manager.image_editor_task",
            draft_id=draft.id,
            image_urls=draft.image_urls,
            primary_image_url=draft.primary_image_url,
            instruction=args.instruction,
        )

        result = await self._delegate(agent, prompt)
        if result is None:
            return {
                "success": False,
                "agent": AgentRole.IMAGE_EDIT.value,
                "draft_id": draft.id,
                "error": "Image editor is unavailable right now",
            }

        operations = [
            {"tool_name": r.tool_name, "success": r.success, **(r.output or {"error": r.error})}
            for r in result.tool_results
        ]
        return {
            "success": any(op["success"] for op in operations),
            "agent": AgentRole.IMAGE_EDIT.value,
            "draft_id": draft.id,
            "operations": operations,
            "summary": result.text,
        }

    # ========== Drafts and Persistence ==========

    async def _discard_tool(self, args: DiscardDraftsInput) -> dict[str, Any]:
        return await self.gate.discard_drafts(args.draft_ids, self.context.merchant_id, self.context.store_id)

    async def _persist_tool(self, args: ConfirmAndPersistInput) -> dict[str, Any]:
        return await self.confirm_and_persist(args.draft_ids)

    async def confirm_and_persist(self, draft_ids: list[str]) -> dict[str, Any]:
        """Persist drafts covered by this turn's confirmation grant."""
        if self.confirmation is None:
            logger.warning("confirm_and_persist called without user confirmation")
            return {
                "success": False,
                "requires_confirmation": True,
                "error": "The user has not confirmed. Ask with ask_user (intent 'persist') first.",
            }

        allowed = [d for d in draft_ids if self.confirmation.covers(d)]
        unconfirmed = [d for d in draft_ids if not self.confirmation.covers(d)]

        if allowed:
            result = await self.gate.confirm_and_persist(
                allowed, store_id=self.context.store_id, merchant_id=self.context.merchant_id
            )
        else:
            result = {
                "success": False,
                "created_count": 0,
                "failed_count": 0,
                "created_product_ids": [],
                "failed_draft_ids": [],
                "skipped_draft_ids": [],
                "error": "None of these drafts were confirmed by the user",
            }

        if unconfirmed:
            result["failed_draft_ids"] = result["failed_draft_ids"] + unconfirmed
            result["failed_count"] = result["failed_count"] + len(unconfirmed)
            result["unconfirmed_draft_ids"] = unconfirmed
        return result

    # ========== UI Commands ==========

    async def _ui_command_tool(self, args: SendUICommandInput) -> dict[str, Any]:
        command = UICommand(**args.model_dump())
        self.ui_commands.append(command)
        self.emitter.executing(
            command.message or f"Sending {command.type} command",
            action="send_ui_command",
            data={"ui_command": command.to_dict()},
        )
        return {"success": True, "command": command.to_dict()}
