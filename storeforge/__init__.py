"""StoreForge - agent orchestration for turning product photos into store listings."""

__version__ = "0.1.0"
