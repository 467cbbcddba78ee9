"""
Image Edit Agent.

Visual operations on a draft's images. Only ``replace_image`` has a real
effect: it promotes one of the draft's own images to primary. Crop,
background removal and enhancement have no processing backend yet.
They return success with the original URL as ``edited_url`` and
``metadata["implemented"] = False``, and callers must treat that as a
no-op. Every operation is recorded in the append-only generated-assets
ledger; originals are never deleted or overwritten.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from storeforge.agents.base import AgentDeps, AgentRole, SubAgent
from storeforge.agents.runtime import AgentTool, ExecutableTool
from storeforge.agents.schemas import AgentContext, DraftStatus
from storeforge.llm.provider_factory import ModelTier
from storeforge.utils.logging import get_logger, log_operation

logger = get_logger("agents.image_edit")

NOT_IMPLEMENTED = "not_implemented"


class CropImageInput(BaseModel):
    draft_id: str
    image_url: str
    aspect_ratio: Literal["1:1", "4:5", "3:4", "16:9"] = "1:1"


class RemoveBackgroundInput(BaseModel):
    draft_id: str
    image_url: str


class EnhanceImageInput(BaseModel):
    draft_id: str
    image_url: str
    mode: Literal["auto", "brighten", "sharpen", "color_boost"] = "auto"


class ReplaceImageInput(BaseModel):
    draft_id: str
    new_primary_url: str = Field(description="One of the draft's existing image URLs")
    reason: Optional[str] = None


def edit_result(
    success: bool,
    original_url: str,
    edited_url: str,
    message: str,
    **metadata: Any,
) -> dict[str, Any]:
    return {
        "success": success,
        "original_url": original_url,
        "edited_url": edited_url,
        "message": message,
        "metadata": metadata,
    }


class ImageEditAgent(SubAgent):
    """Applies image operations to drafts in the caller's scope."""

    role = AgentRole.IMAGE_EDIT
    tier = ModelTier.FAST

    def __init__(self, deps: AgentDeps, context: AgentContext):
        super().__init__(deps)
        self.context = context

    def get_instructions(self) -> str:
        return self.prompts.render("image_edit")

    def build_tools(self) -> list[AgentTool]:
        return [
            ExecutableTool(
                name="crop_image",
                description="Crop a draft image to an aspect ratio.",
                input_model=CropImageInput,
                execute=self._crop_tool,
            ),
            ExecutableTool(
                name="remove_background",
                description="Remove the background from a draft image.",
                input_model=RemoveBackgroundInput,
                execute=self._remove_background_tool,
            ),
            ExecutableTool(
                name="enhance_image",
                description="Enhance a draft image (auto, brighten, sharpen, color_boost).",
                input_model=EnhanceImageInput,
                execute=self._enhance_tool,
            ),
            ExecutableTool(
                name="replace_image",
                description="Make another of the draft's images its primary image.",
                input_model=ReplaceImageInput,
                execute=self._replace_tool,
            ),
        ]

    async def _crop_tool(self, args: CropImageInput) -> dict[str, Any]:
        return await self.crop_image(args.draft_id, args.image_url, args.aspect_ratio)

    async def _remove_background_tool(self, args: RemoveBackgroundInput) -> dict[str, Any]:
        return await self.remove_background(args.draft_id, args.image_url)

    async def _enhance_tool(self, args: EnhanceImageInput) -> dict[str, Any]:
        return await self.enhance_image(args.draft_id, args.image_url, args.mode)

    async def _replace_tool(self, args: ReplaceImageInput) -> dict[str, Any]:
        return await self.replace_image(args.draft_id, args.new_primary_url, self.context.merchant_id)

    # ========== Placeholder operations ==========

    def _placeholder(self, task: str, draft_id: str, image_url: str, **params: Any) -> dict[str, Any]:
        asset_id = self.db.log_asset(
            merchant_id=self.context.merchant_id,
            task=task,
            source_url=image_url,
            result_url=image_url,
            status=NOT_IMPLEMENTED,
            draft_id=draft_id,
            metadata=params,
        )
        log_operation(logger, task, {"draft_id": draft_id, "asset_id": asset_id, "implemented": False})
        return edit_result(
            True,
            image_url,
            image_url,
            f"{task.replace('_', ' ').capitalize()} is not yet implemented; the image is unchanged.",
            implemented=False,
            asset_id=asset_id,
            **params,
        )

    async def crop_image(self, draft_id: str, image_url: str, aspect_ratio: str = "1:1") -> dict[str, Any]:
        return self._placeholder("crop_image", draft_id, image_url, aspect_ratio=aspect_ratio)

    async def remove_background(self, draft_id: str, image_url: str) -> dict[str, Any]:
        return self._placeholder("remove_background", draft_id, image_url)

    async def enhance_image(self, draft_id: str, image_url: str, mode: str = "auto") -> dict[str, Any]:
        return self._placeholder("enhance_image", draft_id, image_url, mode=mode)

    # ========== Primary image replacement ==========

    async def replace_image(self, draft_id: str, new_primary_url: str, merchant_id: str) -> dict[str, Any]:
        """Promote ``new_primary_url`` to primary if it already belongs to the draft."""
        draft = self.db.get_draft(draft_id, merchant_id)
        if draft is None or draft.status != DraftStatus.DRAFT:
            return edit_result(False, "", "", "Draft not found or no longer editable", draft_id=draft_id)

        old_url = draft.primary_image_url
        if new_primary_url not in draft.image_urls:
            return edit_result(
                False,
                old_url,
                old_url,
                "The new primary image must be one of the draft's existing images",
                draft_id=draft_id,
            )

        if not self.db.update_draft_field(draft_id, merchant_id, "primary_image_url", new_primary_url):
            return edit_result(False, old_url, old_url, "Draft is no longer editable", draft_id=draft_id)

        self.db.log_asset(
            merchant_id=merchant_id,
            task="replace_image",
            source_url=old_url,
            result_url=new_primary_url,
            status="applied",
            draft_id=draft_id,
        )
        log_operation(logger, "replace_image", {"draft_id": draft_id})

        return edit_result(
            True,
            old_url,
            new_primary_url,
            "Primary image replaced",
            draft_id=draft_id,
            old_primary_url=old_url,
            new_primary_url=new_primary_url,
        )
