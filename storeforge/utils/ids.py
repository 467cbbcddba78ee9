"""
ID and slug generation utilities for StoreForge.

Thread-safe identifiers for drafts, catalog products, assets and
bulk operations, plus URL slugs for catalog rows.
"""

from __future__ import annotations

import re
import threading
import time
import uuid


# ============================================================================
# Thread-Safe Counter
# ============================================================================


class _ThreadSafeCounter:
    """Thread-safe incrementing counter."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value


_counter = _ThreadSafeCounter()


# ============================================================================
# ID Generation
# ============================================================================


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier.

    Format: ``{prefix}_{timestamp}_{counter}{random}``

    Example:
        >>> generate_id("DRF")
        "DRF_1704067200_001a3f9c2"
    """
    timestamp = int(time.time())
    count = _counter.next()
    suffix = uuid.uuid4().hex[:6]

    if prefix:
        return f"{prefix}_{timestamp}_{count:03d}{suffix}"
    return f"{timestamp}_{count:03d}{suffix}"


def generate_draft_id() -> str:
    return generate_id("DRF")


def generate_product_id() -> str:
    return generate_id("PRD")


def generate_asset_id() -> str:
    return generate_id("AST")


def generate_operation_id() -> str:
    """Generate an ID for a bulk operation reported in step updates."""
    return generate_id("OP")


# ============================================================================
# Slugs
# ============================================================================


_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def to_base36(value: int) -> str:
    """Encode a non-negative integer in base 36."""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def slugify(name: str) -> str:
    """Lowercase a name and collapse non-alphanumerics into single dashes."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def generate_slug(name: str) -> str:
    """Build a catalog slug from a product name plus a uniqueness suffix.

    Names without any ASCII alphanumerics (e.g. Arabic-only names) fall
    back to ``product``.

    Example:
        >>> generate_slug("Oversized Black Hoodie")
        "oversized-black-hoodie-lq2x9k3f-1"
    """
    base = slugify(name) or "product"
    stamp = to_base36(int(time.time() * 1000))
    return f"{base}-{stamp}-{to_base36(_counter.next())}"
