"""External collaborators (grouping, pricing) and session/UI services."""

from storeforge.services.grouping import ImageGrouper, LLMImageGrouper, singleton_groups
from storeforge.services.pricing import CatalogPricingService, PricingService
from storeforge.services.ui_renderer import extract_ui_components

__all__ = [
    "ImageGrouper",
    "LLMImageGrouper",
    "singleton_groups",
    "CatalogPricingService",
    "PricingService",
    "extract_ui_components",
]
