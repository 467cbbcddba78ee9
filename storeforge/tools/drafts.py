"""
Draft tools: field updates and draft card rendering.

``update_draft`` is the only path that changes a draft's content. It is
scoped to the owning merchant and only touches drafts still in
``draft`` status, so persisted and discarded drafts never change again.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from storeforge.agents.schemas import DraftField, DraftStatus
from storeforge.storage.database import DatabaseManager
from storeforge.utils.logging import get_logger, log_operation

logger = get_logger("tools.drafts")

NOT_EDITABLE = "Draft not found for this merchant, or it is no longer editable"


class UpdateDraftInput(BaseModel):
    draft_id: str = Field(min_length=1)
    field: DraftField
    value: Union[str, float, list[str], None] = Field(
        description="New value. tags takes a list of strings, suggested_price a number or null."
    )


class RenderDraftCardsInput(BaseModel):
    draft_ids: Optional[list[str]] = Field(default=None, description="Specific drafts to show")
    batch_id: Optional[str] = Field(default=None, description="Show all drafts of a batch")
    status: Optional[DraftStatus] = Field(default=DraftStatus.DRAFT)


def coerce_value(field: str, value: Any) -> Any:
    """Normalize a raw value for ``field``.

    Raises:
        ValueError: If the value cannot be used for the field
    """
    if field == "tags":
        if isinstance(value, str):
            value = [t.strip() for t in value.split(",")]
        if not isinstance(value, list):
            raise ValueError("tags must be a list of strings")
        return [str(t).strip() for t in value if str(t).strip()]

    if field == "suggested_price":
        if value is None or value == "":
            return None
        try:
            price = float(value)
        except (TypeError, ValueError):
            raise ValueError("suggested_price must be a number") from None
        if price < 0:
            raise ValueError("suggested_price cannot be negative")
        return round(price, 2)

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} must be a non-empty string")
    return value.strip()


class DraftTools:
    """Draft operations scoped to one merchant/store."""

    def __init__(self, db: DatabaseManager, merchant_id: str, store_id: str):
        self.db = db
        self.merchant_id = merchant_id
        self.store_id = store_id

    async def update_draft(self, draft_id: str, field: str, value: Any, merchant_id: str | None = None) -> dict[str, Any]:
        """Apply one field change to a draft owned by ``merchant_id``."""
        merchant_id = merchant_id or self.merchant_id

        try:
            value = coerce_value(field, value)
        except ValueError as e:
            return {"success": False, "draft_id": draft_id, "field": field, "error": str(e)}

        if field == "primary_image_url":
            draft = self.db.get_draft(draft_id, merchant_id)
            if draft is None or draft.status != DraftStatus.DRAFT:
                return {"success": False, "draft_id": draft_id, "field": field, "error": NOT_EDITABLE}
            if value not in draft.image_urls:
                return {
                    "success": False,
                    "draft_id": draft_id,
                    "field": field,
                    "error": "Primary image must be one of the draft's images",
                }

        updated = self.db.update_draft_field(draft_id, merchant_id, field, value)
        if not updated:
            logger.warning(f"update_draft matched no editable draft: {draft_id}")
            return {"success": False, "draft_id": draft_id, "field": field, "error": NOT_EDITABLE}

        log_operation(logger, "update_draft", {"draft_id": draft_id, "field": field})
        return {"success": True, "draft_id": draft_id, "field": field, "value": value}

    async def render_draft_cards(
        self,
        draft_ids: list[str] | None = None,
        batch_id: str | None = None,
        status: DraftStatus | None = DraftStatus.DRAFT,
    ) -> dict[str, Any]:
        """List drafts in scope as display cards."""
        drafts = self.db.list_drafts(
            merchant_id=self.merchant_id,
            store_id=self.store_id,
            batch_id=batch_id,
            status=status,
            draft_ids=draft_ids,
        )
        return {
            "success": True,
            "drafts": [d.card() for d in drafts],
            "count": len(drafts),
        }

    # ========== Tool adapters ==========

    async def update_draft_tool(self, args: UpdateDraftInput) -> dict[str, Any]:
        return await self.update_draft(args.draft_id, args.field, args.value)

    async def render_draft_cards_tool(self, args: RenderDraftCardsInput) -> dict[str, Any]:
        return await self.render_draft_cards(args.draft_ids, args.batch_id, args.status)
