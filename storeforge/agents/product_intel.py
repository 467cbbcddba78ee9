"""
Product Intelligence Agent.

Turns one image group into one bilingual product draft and writes it to
the draft store straight away. Generation output that cannot be parsed
falls back to a low-confidence draft built from the group itself, so
every group yields exactly one draft.

Prices never come from the copy model. They are filled from the pricing
service when it has data for the category, and left empty otherwise.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from storeforge.agents.base import STORE_LABELS, AgentDeps, AgentRole, SubAgent, extract_json
from storeforge.agents.errors import ParseFailure
from storeforge.agents.runtime import AgentTool, ExecutableTool
from storeforge.agents.schemas import (
    AgentContext,
    GeneratedDetails,
    ImageGroup,
    Locale,
    ProductDraft,
    StoreType,
)
from storeforge.llm.base import LLMError
from storeforge.llm.models import image_parts
from storeforge.llm.provider_factory import ModelTier
from storeforge.services.pricing import CatalogPricingService, PricingService
from storeforge.utils.ids import generate_draft_id
from storeforge.utils.logging import get_logger, log_operation

logger = get_logger("agents.product_intel")


CATEGORY_TAXONOMY: dict[str, list[str]] = {
    "clothing": [
        "T-Shirts", "Hoodies", "Pants", "Jackets",
        "Accessories", "Shoes", "Shorts", "Dresses",
    ],
    "car_care": [
        "Interior Care", "Exterior Care", "Detailing",
        "Accessories", "Tools", "Fragrances",
    ],
}

FALLBACK_DESCRIPTION_AR = "منتج مميز من مجموعتنا."
FALLBACK_CATEGORY = "Uncategorized"
FALLBACK_CATEGORY_AR = "غير مصنف"


def fallback_details(group: ImageGroup) -> GeneratedDetails:
    """Deterministic low-confidence details derived from the group."""
    return GeneratedDetails(
        name=group.name,
        name_ar=group.name_ar or group.name,
        description=f"Premium {group.category_hint or 'product'} from our collection.",
        description_ar=FALLBACK_DESCRIPTION_AR,
        category=group.category_hint or FALLBACK_CATEGORY,
        category_ar=FALLBACK_CATEGORY_AR,
        tags=[],
        ai_confidence="low",
    )


class GenerateDetailsInput(BaseModel):
    group: ImageGroup = Field(description="The image group to describe")
    group_index: Optional[int] = Field(default=None, description="Index of this group in the batch")


class SuggestCategoriesInput(BaseModel):
    product_name: str = Field(min_length=1, description="Product name or short description")


class ProductIntelAgent(SubAgent):
    """Creates bilingual drafts for image groups."""

    role = AgentRole.PRODUCT_INTEL
    tier = ModelTier.FAST

    def __init__(
        self,
        deps: AgentDeps,
        context: AgentContext,
        pricing: PricingService | None = None,
    ):
        super().__init__(deps)
        self.context = context
        self.pricing = pricing or CatalogPricingService(deps.db)
        self._generated: dict[str, dict[str, Any]] = {}

    def get_instructions(self) -> str:
        return self.prompts.render(
            "product_intel.instructions",
            store_label=STORE_LABELS[self.context.store_type],
        )

    def build_tools(self) -> list[AgentTool]:
        return [
            ExecutableTool(
                name="generate_product_details",
                description=(
                    "Generate bilingual (English + Arabic) product details for one image "
                    "group and save them as a draft."
                ),
                input_model=GenerateDetailsInput,
                execute=self._generate_tool,
            ),
            ExecutableTool(
                name="suggest_categories",
                description="Pick the best-fit categories for a product from the store's taxonomy.",
                input_model=SuggestCategoriesInput,
                execute=self._suggest_tool,
            ),
        ]

    async def _generate_tool(self, args: GenerateDetailsInput) -> dict[str, Any]:
        # A repeated call for the same group returns the existing draft.
        if args.group.id in self._generated:
            return self._generated[args.group.id]

        ctx = self.context
        result = await self.generate_product_details(
            group=args.group,
            locale=ctx.locale,
            store_type=ctx.store_type,
            store_id=ctx.store_id,
            merchant_id=ctx.merchant_id,
            batch_id=ctx.batch_id,
            group_index=args.group_index,
        )
        self._generated[args.group.id] = result
        return result

    async def _suggest_tool(self, args: SuggestCategoriesInput) -> dict[str, Any]:
        return await self.suggest_categories(args.product_name, self.context.store_type)

    # ========== Operations ==========

    async def generate_product_details(
        self,
        group: ImageGroup,
        locale: Locale,
        store_type: StoreType,
        store_id: str,
        merchant_id: str,
        batch_id: str | None = None,
        group_index: int | None = None,
    ) -> dict[str, Any]:
        """Generate details for ``group`` and insert a draft.

        Returns:
            ``{"success": True, "draft_id", "group_id", "details", "fallback", "message"}``
        """
        prompt = self.prompts.render(
            "product_intel.details",
            store_label=STORE_LABELS[store_type],
            tone="fashion-forward" if store_type == "clothing" else "professional",
            group_name=group.name,
            category_hint=group.category_hint,
            image_count=len(group.image_urls),
            store_type=store_type,
            categories=CATEGORY_TAXONOMY[store_type],
        )

        used_fallback = False
        try:
            text = await self._generate(
                image_parts(prompt, [group.primary_image_url]),
                tier=ModelTier.PRO,
            )
            details = GeneratedDetails.model_validate(extract_json(text))
        except (LLMError, ParseFailure, ValidationError) as e:
            logger.warning(f"Detail generation for {group.id} fell back: {type(e).__name__}: {e}")
            details = fallback_details(group)
            used_fallback = True

        suggested_price = None
        if details.category:
            suggested_price = await self.pricing.suggest_price(details.category, merchant_id)

        draft = ProductDraft(
            id=generate_draft_id(),
            batch_id=batch_id,
            store_id=store_id,
            merchant_id=merchant_id,
            group_index=group_index,
            name=details.name,
            name_ar=details.name_ar,
            description=details.description,
            description_ar=details.description_ar,
            category=details.category,
            category_ar=details.category_ar,
            tags=details.tags,
            suggested_price=suggested_price,
            image_urls=group.image_urls,
            primary_image_url=group.primary_image_url,
            ai_confidence=details.ai_confidence,
            metadata={
                "source_group_id": group.id,
                "category_hint": group.category_hint,
                "fallback": used_fallback,
            },
        )
        self.db.insert_draft(draft)

        log_operation(logger, "generate_product_details", {
            "draft_id": draft.id,
            "group_id": group.id,
            "confidence": draft.ai_confidence,
            "fallback": used_fallback,
        })

        created = "تم إنشاء المسودة" if locale == "ar" else "Draft created"
        return {
            "success": True,
            "draft_id": draft.id,
            "group_id": group.id,
            "details": draft.card(),
            "fallback": used_fallback,
            "message": f"{created}: {draft.name if locale == 'en' else draft.name_ar}",
        }

    async def suggest_categories(self, product_name: str, store_type: StoreType) -> dict[str, Any]:
        """Pick the best-fit categories from the fixed taxonomy using the fast tier."""
        taxonomy = CATEGORY_TAXONOMY[store_type]
        by_lower = {c.lower(): c for c in taxonomy}

        prompt = self.prompts.render(
            "product_intel.categories",
            product_name=product_name,
            store_label=STORE_LABELS[store_type],
            categories=taxonomy,
        )

        try:
            data = extract_json(await self._generate(prompt, tier=ModelTier.FAST, max_tokens=200))
            primary = by_lower.get(str(data.get("primary", "")).strip().lower())
            if primary is None:
                raise ParseFailure(f"Category outside taxonomy: {data.get('primary')!r}")
            secondary = [
                by_lower[s.strip().lower()]
                for s in data.get("secondary") or []
                if isinstance(s, str) and s.strip().lower() in by_lower and by_lower[s.strip().lower()] != primary
            ]
        except (LLMError, ParseFailure) as e:
            logger.warning(f"Category suggestion fell back: {e}")
            return {"primary": taxonomy[0], "secondary": [], "store_type": store_type, "fallback": True}

        return {"primary": primary, "secondary": secondary, "store_type": store_type, "fallback": False}
