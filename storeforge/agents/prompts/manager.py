"""
Prompt Manager - Centralized prompt template loading and rendering.

Loads agent instructions and generation prompts from YAML files and
renders them with Jinja2.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined

from storeforge.utils.logging import get_logger

logger = get_logger("prompts.manager")


class PromptManager:
    """Manages prompt templates for the agents.

    A YAML file either holds a single ``template`` (registered under the
    file stem) or a ``templates`` mapping whose entries are registered as
    ``{stem}.{key}``.

    Usage:
        manager = PromptManager()
        manager.load_directory(Path(__file__).parent)

        prompt = manager.render("vision.instructions", max_groups=10)
    """

    def __init__(self):
        self._templates: dict[str, str] = {}
        self._metadata: dict[str, dict] = {}
        self._env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )

    def register(
        self,
        name: str,
        template: str,
        metadata: dict | None = None,
    ) -> None:
        self._templates[name] = template
        if metadata:
            self._metadata[name] = metadata
        logger.debug(f"Registered prompt: {name}")

    def get(self, name: str) -> str | None:
        return self._templates.get(name)

    def render(self, name: str, **kwargs: Any) -> str:
        """Render a template with variables.

        Raises:
            KeyError: If template not found
            jinja2.UndefinedError: If a referenced variable is missing
        """
        if name not in self._templates:
            raise KeyError(f"Prompt template not found: {name}")
        return self._env.from_string(self._templates[name]).render(**kwargs).strip()

    def load_file(self, file_path: str | Path) -> int:
        """Load templates from a YAML file.

        Returns:
            Number of templates registered
        """
        file_path = Path(file_path)

        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Prompt file must contain a mapping: {file_path}")

        name = file_path.stem
        metadata = {k: v for k, v in data.items() if k not in ("template", "templates")}

        if "templates" in data:
            for key, template in data["templates"].items():
                self.register(f"{name}.{key}", template, metadata)
            return len(data["templates"])

        self.register(name, data.get("template", ""), metadata)
        return 1

    def load_directory(self, dir_path: str | Path) -> int:
        """Load every ``*.yaml`` file in a directory."""
        dir_path = Path(dir_path)
        count = 0
        for file_path in sorted(dir_path.glob("*.yaml")):
            count += self.load_file(file_path)
        logger.debug(f"Loaded {count} prompts from {dir_path}")
        return count

    def list_prompts(self) -> list[str]:
        return list(self._templates.keys())

    def get_metadata(self, name: str) -> dict:
        return self._metadata.get(name, {})
