"""
Image grouping service.

The vision agent treats grouping as an opaque collaborator behind the
``ImageGrouper`` protocol. ``LLMImageGrouper`` is the default backend:
one multimodal fast-tier call returning JSON groups, degrading to one
group per image when the call or its output fails.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from storeforge.agents.base import extract_json
from storeforge.agents.errors import ParseFailure
from storeforge.agents.prompts import PromptManager, get_prompt_manager
from storeforge.llm.base import LLMError, LLMProvider
from storeforge.llm.models import image_parts
from storeforge.utils.logging import get_logger

logger = get_logger("services.grouping")

CATEGORY_EXAMPLES = {
    "clothing": "t-shirt, hoodie, jacket, pants, shoes, accessory",
    "car_care": "interior cleaner, wax, polish, microfiber, tool, fragrance",
}


@runtime_checkable
class ImageGrouper(Protocol):
    """Partitions image URLs into raw product groups."""

    async def group(self, image_urls: list[str], store_type: str = "clothing") -> list[dict[str, Any]]:
        ...


def singleton_groups(image_urls: list[str]) -> list[dict[str, Any]]:
    """One low-confidence group per image."""
    return [
        {
            "id": f"group_{index + 1}",
            "name": f"Product {index + 1}",
            "image_urls": [url],
            "primary_image_url": url,
            "category_hint": "Uncategorized",
            "confidence": "low",
        }
        for index, url in enumerate(image_urls)
    ]


class LLMImageGrouper:
    """Groups images with a multimodal model call."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        prompts: PromptManager | None = None,
    ):
        self.provider = provider
        self.model = model
        self.prompts = prompts or get_prompt_manager()

    async def group(self, image_urls: list[str], store_type: str = "clothing") -> list[dict[str, Any]]:
        prompt = self.prompts.render(
            "vision.grouping",
            count=len(image_urls),
            image_urls=image_urls,
            category_examples=CATEGORY_EXAMPLES.get(store_type, CATEGORY_EXAMPLES["clothing"]),
        )

        try:
            text = await self.provider.complete_simple(
                image_parts(prompt, image_urls),
                model=self.model,
                temperature=0.2,
            )
            groups = extract_json(text).get("groups")
            if not isinstance(groups, list):
                raise ParseFailure("'groups' is missing or not a list")
        except (LLMError, ParseFailure) as e:
            logger.warning(f"Grouping failed, using one group per image: {e}")
            return singleton_groups(image_urls)

        return [g for g in groups if isinstance(g, dict)]
