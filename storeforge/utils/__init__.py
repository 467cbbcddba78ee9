"""
StoreForge Utils - Helper functions and utilities.

Logging, ID and slug generation.
"""

from storeforge.utils.logging import setup_logging, get_logger
from storeforge.utils.ids import generate_id, generate_slug

__all__ = [
    "setup_logging",
    "get_logger",
    "generate_id",
    "generate_slug",
]
