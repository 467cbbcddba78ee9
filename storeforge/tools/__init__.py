"""Draft store tools and the persistence gate."""

from storeforge.tools.drafts import DraftTools
from storeforge.tools.persistence import PersistenceGate

__all__ = ["DraftTools", "PersistenceGate"]
