"""
Prompts - agent instructions and generation templates.

- manager.yaml: orchestrator instructions, onboarding section
- vision.yaml: grouping agent and grouping service prompts
- product_intel.yaml: bilingual detail generation and category picking
- editing.yaml: copy rewriting
- image_edit.yaml: image operations agent
"""

from pathlib import Path

from storeforge.agents.prompts.manager import PromptManager

_PROMPTS_DIR = Path(__file__).parent
_DEFAULT_MANAGER: PromptManager | None = None


def get_prompt_manager() -> PromptManager:
    """Get the default prompt manager with all templates pre-loaded."""
    global _DEFAULT_MANAGER
    if _DEFAULT_MANAGER is None:
        _DEFAULT_MANAGER = PromptManager()
        _DEFAULT_MANAGER.load_directory(_PROMPTS_DIR)
    return _DEFAULT_MANAGER


__all__ = ["PromptManager", "get_prompt_manager"]
