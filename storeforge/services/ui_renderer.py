"""
Generative UI component extraction.

Maps the Manager's tool results (and a pending ask_user pause) to the
fixed set of interactive components the client knows how to render.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from storeforge.agents.runtime import PauseRequest, ToolResult


def _option(option_id: str, label: str) -> dict[str, str]:
    return {"id": option_id, "label": label}


def question_card(pause: PauseRequest) -> dict[str, Any]:
    payload = pause.payload
    return {
        "type": "question_card",
        "question": payload.get("question", ""),
        "options": [_option(o, o) for o in payload.get("options") or []],
        "intent": payload.get("intent", "general"),
        "draft_ids": payload.get("draft_ids"),
    }


def _vision_card(output: dict[str, Any]) -> dict[str, Any]:
    count = output.get("total_groups", 0)
    return {
        "type": "question_card",
        "question": f"I found {count} product{'s' if count != 1 else ''}. Are these grouped correctly?",
        "options": [
            _option("confirm_groups", "Yes, looks good"),
            _option("regroup", "Try grouping again"),
            _option("manual_adjust", "Let me adjust"),
        ],
        "groups": output.get("groups", []),
        "low_confidence_images": output.get("low_confidence_images", []),
    }


def _drafts_card(output: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "confirmation_card",
        "action": "approve_drafts",
        "title": f"{output.get('created_count', 0)} drafts ready for review",
        "draft_ids": output.get("draft_ids", []),
        "drafts": output.get("drafts", []),
    }


def _persist_card(output: dict[str, Any]) -> dict[str, Any]:
    clean = output.get("failed_count", 0) == 0
    return {
        "type": "status_card",
        "title": "Products Created" if clean else "Some Products Failed",
        "variant": "success" if clean else "warning",
        "created_count": output.get("created_count", 0),
        "failed_count": output.get("failed_count", 0),
        "created_product_ids": output.get("created_product_ids", []),
        "failed_draft_ids": output.get("failed_draft_ids", []),
    }


def _discard_card(output: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "status_card",
        "title": "Drafts Discarded",
        "variant": "info",
        "discarded_count": output.get("discarded_count", 0),
    }


_RENDERERS = {
    "delegate_to_vision": _vision_card,
    "delegate_to_product_intel": _drafts_card,
    "render_draft_cards": lambda output: {"type": "draft_grid", "drafts": output.get("drafts", [])},
    "confirm_and_persist": _persist_card,
    "discard_drafts": _discard_card,
}


def extract_ui_components(
    tool_results: Sequence[ToolResult],
    pause: PauseRequest | None = None,
) -> list[dict[str, Any]]:
    """Build UI components for one turn, in tool-call order, pause last.

    Failed tool results produce no component, except a persist attempt
    that created some products before others failed.
    """
    components = []
    for result in tool_results:
        renderer = _RENDERERS.get(result.tool_name)
        if renderer is None or not isinstance(result.output, dict):
            continue
        if not result.success and not result.output.get("created_count"):
            continue
        components.append(renderer(result.output))

    if pause is not None and pause.tool_name == "ask_user":
        components.append(question_card(pause))
    return components
