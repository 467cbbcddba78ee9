"""
Vision Agent.

Partitions uploaded image URLs into product groups. The grouping itself
comes from an ``ImageGrouper``; this agent validates its output so that
every input URL lands in exactly one group, with a primary image that
belongs to the group.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from storeforge.agents.base import AgentDeps, AgentRole, SubAgent
from storeforge.agents.runtime import AgentTool, ExecutableTool
from storeforge.agents.schemas import ImageGroup, StoreType
from storeforge.llm.provider_factory import ModelTier
from storeforge.services.grouping import ImageGrouper, LLMImageGrouper
from storeforge.utils.logging import get_logger, log_operation

logger = get_logger("agents.vision")

_CONFIDENCE_LEVELS = {"high", "medium", "low"}


class AnalyzeImagesInput(BaseModel):
    image_urls: list[str] = Field(min_length=1, description="URLs of the images to group")
    batch_id: Optional[str] = Field(default=None, description="Batch ID for tracking")


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _unique_id(candidate: str, seen_ids: set[str]) -> str:
    group_id, suffix = candidate, 2
    while group_id in seen_ids:
        group_id = f"{candidate}_{suffix}"
        suffix += 1
    seen_ids.add(group_id)
    return group_id


def validate_groups(raw_groups: list[dict[str, Any]], image_urls: list[str]) -> list[ImageGroup]:
    """Repair raw grouping output into a strict partition of ``image_urls``.

    - URLs not in the input are dropped
    - a URL already claimed by an earlier group is dropped
    - groups left empty are dropped
    - unclaimed input URLs each get their own ``group_auto_N`` group
    - a primary image outside its group is replaced by the group's first image
    - non-string text fields are discarded
    - group ids are made unique

    Duplicate input URLs count once.
    """
    expected = list(dict.fromkeys(image_urls))
    known = set(expected)
    claimed: set[str] = set()
    seen_ids: set[str] = set()
    groups: list[ImageGroup] = []

    for index, raw in enumerate(raw_groups):
        if not isinstance(raw, dict):
            continue
        raw_urls = raw.get("image_urls")
        if not isinstance(raw_urls, list):
            continue
        urls = [
            url for url in dict.fromkeys(u for u in raw_urls if isinstance(u, str))
            if url in known and url not in claimed
        ]
        if not urls:
            continue
        claimed.update(urls)

        raw_id = raw.get("id")
        group_id = _unique_id(
            str(raw_id) if isinstance(raw_id, (str, int)) and str(raw_id) else f"group_{index + 1}",
            seen_ids,
        )
        primary = raw.get("primary_image_url")
        confidence = raw.get("confidence")
        groups.append(ImageGroup(
            id=group_id,
            name=_text(raw.get("name")) or f"Product {len(groups) + 1}",
            name_ar=_text(raw.get("name_ar")),
            image_urls=urls,
            primary_image_url=primary if isinstance(primary, str) and primary in urls else urls[0],
            category_hint=_text(raw.get("category_hint")),
            confidence=confidence if confidence in _CONFIDENCE_LEVELS else "low",
        ))

    leftovers = [url for url in expected if url not in claimed]
    for number, url in enumerate(leftovers, start=1):
        groups.append(ImageGroup(
            id=_unique_id(f"group_auto_{number}", seen_ids),
            name=f"Product {len(groups) + 1}",
            image_urls=[url],
            primary_image_url=url,
            category_hint="Uncategorized",
            confidence="low",
        ))

    if leftovers:
        logger.warning(f"{len(leftovers)} images were not grouped and got their own groups")

    return groups


class VisionAgent(SubAgent):
    """Groups product images by visual similarity."""

    role = AgentRole.VISION
    tier = ModelTier.FAST

    def __init__(
        self,
        deps: AgentDeps,
        grouper: ImageGrouper | None = None,
        store_type: StoreType = "clothing",
    ):
        super().__init__(deps)
        self.grouper = grouper or LLMImageGrouper(
            deps.provider, deps.models.for_tier(ModelTier.FAST), deps.prompts
        )
        self.store_type = store_type

    def get_instructions(self) -> str:
        return self.prompts.render("vision.instructions")

    def build_tools(self) -> list[AgentTool]:
        return [
            ExecutableTool(
                name="analyze_images",
                description=(
                    "Group product images by visual similarity. Every image ends up "
                    "in exactly one group with a suggested primary image."
                ),
                input_model=AnalyzeImagesInput,
                execute=self.analyze_images,
            ),
        ]

    async def analyze_images(self, args: AnalyzeImagesInput) -> dict[str, Any]:
        raw_groups = await self.grouper.group(args.image_urls, store_type=self.store_type)
        groups = validate_groups(raw_groups, args.image_urls)

        total_images = sum(len(g.image_urls) for g in groups)
        log_operation(logger, "analyze_images", {
            "images": total_images,
            "groups": len(groups),
            "batch_id": args.batch_id,
        })

        return {
            "success": True,
            "groups": [g.model_dump() for g in groups],
            "total_images": total_images,
            "total_groups": len(groups),
            "low_confidence_images": [
                url for g in groups if g.confidence == "low" for url in g.image_urls
            ],
            "batch_id": args.batch_id,
        }
