"""
StoreForge Configuration.

Central configuration for model tiers, agent step budgets, bulk
concurrency and storage. Values come from an optional JSON file and are
overridden by environment variables (``.env`` supported).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

load_dotenv()


# ============================================================================
# Default Paths
# ============================================================================


def get_default_data_dir() -> Path:
    """Get the default data directory for StoreForge."""
    if env_path := os.environ.get("STOREFORGE_DATA_DIR"):
        return Path(env_path)
    return Path.cwd() / "data"


def get_default_config_path() -> Path:
    return get_default_data_dir() / "storeforge_config.json"


# ============================================================================
# Configuration Classes
# ============================================================================


@dataclass
class LLMConfig:
    """Configuration for the model provider and its two tiers.

    The fast tier serves vision grouping, editing and small
    classification calls; the pro tier serves orchestration and
    bilingual copy generation.
    """

    provider: Literal["openrouter", "openai", "lm_studio"] = "openrouter"
    fast_model: str = "google/gemini-2.5-flash"
    pro_model: str = "google/gemini-2.5-pro"
    api_key: str | None = None  # Falls back to environment variable
    base_url: str | None = None
    temperature: float = 0.4
    max_tokens: int = 4096
    timeout: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMConfig":
        return cls(
            provider=data.get("provider", "openrouter"),
            fast_model=data.get("fast_model", "google/gemini-2.5-flash"),
            pro_model=data.get("pro_model", "google/gemini-2.5-pro"),
            api_key=data.get("api_key"),
            base_url=data.get("base_url"),
            temperature=data.get("temperature", 0.4),
            max_tokens=data.get("max_tokens", 4096),
            timeout=data.get("timeout", 60.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "fast_model": self.fast_model,
            "pro_model": self.pro_model,
            "base_url": self.base_url,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
            # API key is never written to disk
        }


@dataclass
class AgentConfig:
    """Step budgets per agent and the bulk fan-out width."""

    manager_max_steps: int = 30
    vision_max_steps: int = 3
    product_intel_max_steps: int = 4
    editing_max_steps: int = 3
    image_edit_max_steps: int = 4
    bulk_concurrency: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        return cls(**{k: v for k, v in data.items() if hasattr(cls, k)})

    def to_dict(self) -> dict[str, Any]:
        return {
            "manager_max_steps": self.manager_max_steps,
            "vision_max_steps": self.vision_max_steps,
            "product_intel_max_steps": self.product_intel_max_steps,
            "editing_max_steps": self.editing_max_steps,
            "image_edit_max_steps": self.image_edit_max_steps,
            "bulk_concurrency": self.bulk_concurrency,
        }


@dataclass
class StorageConfig:
    """Configuration for the sqlite draft/catalog store."""

    db_path: Path | None = None

    def resolve_db_path(self, data_dir: Path) -> Path:
        return Path(self.db_path) if self.db_path else data_dir / "storeforge.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageConfig":
        db_path = data.get("db_path")
        return cls(db_path=Path(db_path) if db_path else None)

    def to_dict(self) -> dict[str, Any]:
        return {"db_path": str(self.db_path) if self.db_path else None}


@dataclass
class StoreForgeConfig:
    """Main configuration for StoreForge.

    Aggregates all sub-configurations and provides load/save functionality.
    """

    data_dir: Path = field(default_factory=get_default_data_dir)
    llm: LLMConfig = field(default_factory=LLMConfig)
    agents: AgentConfig = field(default_factory=AgentConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path | None = None

    def __post_init__(self):
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir)

    @property
    def db_path(self) -> Path:
        return self.storage.resolve_db_path(self.data_dir)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "StoreForgeConfig":
        """Load configuration from a JSON file, then apply env overrides.

        A missing file yields the defaults.
        """
        config_path = Path(config_path) if config_path else get_default_config_path()

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                config = cls.from_dict(json.load(f))
        else:
            config = cls()

        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override fields from ``STOREFORGE_*`` environment variables."""
        if provider := os.getenv("STOREFORGE_PROVIDER"):
            self.llm.provider = provider
        if fast_model := os.getenv("STOREFORGE_FAST_MODEL"):
            self.llm.fast_model = fast_model
        if pro_model := os.getenv("STOREFORGE_PRO_MODEL"):
            self.llm.pro_model = pro_model
        if base_url := os.getenv("STOREFORGE_BASE_URL"):
            self.llm.base_url = base_url
        if db_path := os.getenv("STOREFORGE_DB_PATH"):
            self.storage.db_path = Path(db_path)
        if log_level := os.getenv("STOREFORGE_LOG_LEVEL"):
            self.log_level = log_level.upper()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoreForgeConfig":
        log_dir = data.get("log_dir")
        return cls(
            data_dir=Path(data.get("data_dir", get_default_data_dir())),
            llm=LLMConfig.from_dict(data.get("llm", {})),
            agents=AgentConfig.from_dict(data.get("agents", {})),
            storage=StorageConfig.from_dict(data.get("storage", {})),
            log_level=data.get("log_level", "INFO"),
            log_dir=Path(log_dir) if log_dir else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "llm": self.llm.to_dict(),
            "agents": self.agents.to_dict(),
            "storage": self.storage.to_dict(),
            "log_level": self.log_level,
            "log_dir": str(self.log_dir) if self.log_dir else None,
        }

    def save(self, config_path: str | Path | None = None) -> Path:
        """Save configuration to a JSON file and return its path."""
        config_path = Path(config_path) if config_path else get_default_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

        return config_path

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)


# ============================================================================
# Global Config Instance
# ============================================================================


_global_config: StoreForgeConfig | None = None


def get_config() -> StoreForgeConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = StoreForgeConfig.load()
    return _global_config


def set_config(config: StoreForgeConfig) -> None:
    global _global_config
    _global_config = config


def reload_config(config_path: str | Path | None = None) -> StoreForgeConfig:
    """Reload configuration from disk."""
    global _global_config
    _global_config = StoreForgeConfig.load(config_path)
    return _global_config
