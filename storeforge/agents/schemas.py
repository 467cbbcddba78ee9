"""
Domain models shared by the agents.

AgentContext is built once per request. ImageGroup only lives inside
tool results. ProductDraft and StoreProduct mirror rows of the draft
store and the production catalog.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Locale = Literal["en", "ar"]
StoreType = Literal["clothing", "car_care"]
Confidence = Literal["high", "medium", "low"]


# ============================================================================
# Enums
# ============================================================================


class DraftStatus(str, Enum):
    """Draft lifecycle. ``persisted`` and ``discarded`` are terminal."""
    DRAFT = "draft"
    PERSISTED = "persisted"
    DISCARDED = "discarded"


class WorkflowVariant(str, Enum):
    ONBOARDING = "onboarding"


# ============================================================================
# Request Context
# ============================================================================


class AgentContext(BaseModel):
    """Immutable per-request context: ownership scope plus presentation hints."""

    model_config = ConfigDict(frozen=True)

    merchant_id: str = Field(min_length=1)
    store_id: str = Field(min_length=1)
    locale: Locale = "en"
    store_type: StoreType = "clothing"
    batch_id: Optional[str] = None
    workflow_variant: Optional[WorkflowVariant] = None

    @property
    def is_onboarding(self) -> bool:
        return self.workflow_variant == WorkflowVariant.ONBOARDING


class ConfirmationGrant(BaseModel):
    """Permission to persist, granted by a user answering a persist question.

    ``draft_ids`` of None covers every draft in scope.
    """

    model_config = ConfigDict(frozen=True)

    draft_ids: Optional[tuple[str, ...]] = None

    def covers(self, draft_id: str) -> bool:
        return self.draft_ids is None or draft_id in self.draft_ids


# ============================================================================
# Image Groups
# ============================================================================


class ImageGroup(BaseModel):
    """Images judged to show the same product."""

    id: str
    name: str
    name_ar: Optional[str] = None
    image_urls: list[str] = Field(min_length=1)
    primary_image_url: str
    category_hint: Optional[str] = None
    confidence: Confidence = "medium"

    @model_validator(mode="after")
    def _primary_is_member(self) -> "ImageGroup":
        if self.primary_image_url not in self.image_urls:
            self.primary_image_url = self.image_urls[0]
        return self


# ============================================================================
# Drafts and Catalog
# ============================================================================


DRAFT_EDITABLE_FIELDS = (
    "name",
    "name_ar",
    "description",
    "description_ar",
    "category",
    "category_ar",
    "tags",
    "suggested_price",
    "primary_image_url",
)

DraftField = Literal[
    "name",
    "name_ar",
    "description",
    "description_ar",
    "category",
    "category_ar",
    "tags",
    "suggested_price",
    "primary_image_url",
]


class ProductDraft(BaseModel):
    """Mutable staging record for a candidate product."""

    id: str
    store_id: str
    merchant_id: str
    batch_id: Optional[str] = None
    group_index: Optional[int] = None

    name: str
    name_ar: str
    description: str = ""
    description_ar: str = ""
    category: str = ""
    category_ar: str = ""
    tags: list[str] = Field(default_factory=list)
    suggested_price: Optional[float] = None

    image_urls: list[str] = Field(min_length=1)
    primary_image_url: str
    ai_confidence: Confidence = "medium"
    status: DraftStatus = DraftStatus.DRAFT
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _primary_is_member(self) -> "ProductDraft":
        if self.primary_image_url not in self.image_urls:
            raise ValueError("primary_image_url must be one of image_urls")
        return self

    def card(self) -> dict[str, Any]:
        """Compact representation used in tool results and UI cards."""
        return {
            "id": self.id,
            "name": self.name,
            "name_ar": self.name_ar,
            "description": self.description,
            "description_ar": self.description_ar,
            "category": self.category,
            "category_ar": self.category_ar,
            "tags": self.tags,
            "suggested_price": self.suggested_price,
            "primary_image_url": self.primary_image_url,
            "image_count": len(self.image_urls),
            "ai_confidence": self.ai_confidence,
            "status": self.status.value,
        }


class StoreProduct(BaseModel):
    """Production catalog row created by the persistence gate."""

    id: str
    store_id: str
    merchant_id: str
    slug: str
    name: str
    name_ar: str
    description: str = ""
    description_ar: str = ""
    category: str = ""
    category_ar: str = ""
    tags: list[str] = Field(default_factory=list)
    price: float = 0.0
    image_urls: list[str] = Field(default_factory=list)
    primary_image_url: Optional[str] = None
    status: str = "draft"
    ai_generated: bool = True
    ai_confidence: Confidence = "medium"
    source_draft_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ============================================================================
# Structured Generation Output
# ============================================================================


class GeneratedDetails(BaseModel):
    """Shape expected from the bilingual detail generation call."""

    name: str = Field(min_length=1)
    name_ar: str = Field(min_length=1)
    description: str
    description_ar: str
    category: str
    category_ar: str
    tags: list[str] = Field(default_factory=list)
    ai_confidence: Confidence = "medium"

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return value
