"""
Persistence Gate.

The only path from the draft store into the production catalog. Each
draft is persisted independently: one failed insert does not stop the
rest, and the result reports created and failed drafts side by side.
Drafts outside the caller's (merchant, store) scope match no rows.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from pydantic import BaseModel, Field

from storeforge.agents.schemas import DraftStatus, ProductDraft, StoreProduct
from storeforge.storage.database import DatabaseManager
from storeforge.utils.ids import generate_product_id, generate_slug
from storeforge.utils.logging import get_logger, log_error, log_operation

logger = get_logger("tools.persistence")


class ConfirmAndPersistInput(BaseModel):
    draft_ids: list[str] = Field(min_length=1, description="Drafts the user approved")


class DiscardDraftsInput(BaseModel):
    draft_ids: list[str] = Field(min_length=1, description="Drafts the user rejected")


def product_from_draft(draft: ProductDraft) -> StoreProduct:
    """Build the catalog row for a draft."""
    return StoreProduct(
        id=generate_product_id(),
        store_id=draft.store_id,
        merchant_id=draft.merchant_id,
        slug=generate_slug(draft.name),
        name=draft.name,
        name_ar=draft.name_ar,
        description=draft.description,
        description_ar=draft.description_ar,
        category=draft.category,
        category_ar=draft.category_ar,
        tags=draft.tags,
        price=draft.suggested_price or 0.0,
        image_urls=draft.image_urls,
        primary_image_url=draft.primary_image_url,
        status="draft",
        ai_generated=True,
        ai_confidence=draft.ai_confidence,
        source_draft_id=draft.id,
    )


class PersistenceGate:
    """Commits approved drafts to the catalog and discards rejected ones."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def confirm_and_persist(
        self,
        draft_ids: list[str],
        store_id: str,
        merchant_id: str,
    ) -> dict[str, Any]:
        """Persist the in-scope drafts among ``draft_ids``.

        Returns:
            ``created_count``, ``failed_count``, ``created_product_ids``,
            ``failed_draft_ids`` and ``skipped_draft_ids`` (ids that matched
            no editable draft in scope).
        """
        requested = list(dict.fromkeys(draft_ids))
        drafts = self.db.list_drafts(
            merchant_id=merchant_id,
            store_id=store_id,
            status=DraftStatus.DRAFT,
            draft_ids=requested,
        )
        found = {d.id for d in drafts}
        skipped = [draft_id for draft_id in requested if draft_id not in found]

        if not drafts:
            logger.warning(f"confirm_and_persist matched no drafts for merchant {merchant_id}")
            return {
                "success": False,
                "created_count": 0,
                "failed_count": 0,
                "created_product_ids": [],
                "failed_draft_ids": [],
                "skipped_draft_ids": skipped,
                "error": "No matching drafts found",
            }

        created_product_ids: list[str] = []
        failed_draft_ids: list[str] = []

        for draft in drafts:
            product = product_from_draft(draft)
            try:
                persisted = self.db.persist_draft(product, draft.id, merchant_id, store_id)
            except sqlite3.Error as e:
                log_error(logger, "persist_draft", e, {"draft_id": draft.id})
                persisted = False

            if persisted:
                created_product_ids.append(product.id)
            else:
                failed_draft_ids.append(draft.id)

        log_operation(logger, "confirm_and_persist", {
            "created": len(created_product_ids),
            "failed": len(failed_draft_ids),
            "skipped": len(skipped),
        })

        return {
            "success": bool(created_product_ids),
            "created_count": len(created_product_ids),
            "failed_count": len(failed_draft_ids),
            "created_product_ids": created_product_ids,
            "failed_draft_ids": failed_draft_ids,
            "skipped_draft_ids": skipped,
        }

    async def discard_drafts(
        self,
        draft_ids: list[str],
        merchant_id: str,
        store_id: str | None = None,
    ) -> dict[str, Any]:
        """Mark in-scope drafts as discarded. The catalog is not touched."""
        discarded = self.db.discard_drafts(list(dict.fromkeys(draft_ids)), merchant_id, store_id)
        log_operation(logger, "discard_drafts", {"requested": len(draft_ids), "discarded": discarded})
        return {
            "success": discarded > 0,
            "discarded_count": discarded,
            "requested_count": len(draft_ids),
        }
