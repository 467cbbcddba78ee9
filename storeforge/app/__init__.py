"""
StoreForge App - configuration and CLI entry point.
"""

from storeforge.app.config import (
    AgentConfig,
    LLMConfig,
    StorageConfig,
    StoreForgeConfig,
    get_config,
    reload_config,
    set_config,
)

__all__ = [
    "AgentConfig",
    "LLMConfig",
    "StorageConfig",
    "StoreForgeConfig",
    "get_config",
    "reload_config",
    "set_config",
]
