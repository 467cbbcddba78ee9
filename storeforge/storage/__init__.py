"""Persistence for drafts, the production catalog and audit ledgers."""

from storeforge.storage.database import DatabaseManager, ScopedActionLogger

__all__ = ["DatabaseManager", "ScopedActionLogger"]
