"""
Pricing heuristic.

Suggests a price from what the merchant already sells in the same
category. No data means no suggestion.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from storeforge.storage.database import DatabaseManager


@runtime_checkable
class PricingService(Protocol):
    async def suggest_price(self, category: str, merchant_id: str) -> float | None:
        ...


class CatalogPricingService:
    """Average positive catalog price for the merchant's category."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def suggest_price(self, category: str, merchant_id: str) -> float | None:
        if not category:
            return None
        return self.db.average_price(merchant_id, category)
