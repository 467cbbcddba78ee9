"""
Step updates streamed to the client while a turn runs.

Field names are converted to camelCase in ``to_dict`` because that is
the shape clients consume on the wire.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Optional

from storeforge.utils.ids import generate_operation_id
from storeforge.utils.logging import get_logger

logger = get_logger("streaming.steps")

ItemStatus = Literal["pending", "updating", "done", "failed"]


class StepType(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ============================================================================
# Bulk Progress
# ============================================================================


@dataclass
class BulkProgressItem:
    id: str
    name: str
    status: ItemStatus = "pending"
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"id": self.id, "name": self.name, "status": self.status, "error": self.error})


@dataclass
class BulkProgressData:
    """Point-in-time snapshot of a multi-item batch operation."""

    operation_id: str
    operation_label: str
    current: int
    total: int
    current_item: Optional[BulkProgressItem] = None
    completed_items: list[BulkProgressItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "operationId": self.operation_id,
            "operationLabel": self.operation_label,
            "current": self.current,
            "total": self.total,
            "currentItem": self.current_item.to_dict() if self.current_item else None,
            "completedItems": [item.to_dict() for item in self.completed_items],
        })


class BulkProgressTracker:
    """Tracks per-item status for one batch operation and produces snapshots.

    Usage:
        tracker = BulkProgressTracker("Generating drafts", [("g1", "Hoodie"), ("g2", "Cap")])
        tracker.mark("g1", "updating")
        snapshot = tracker.mark("g1", "done")
    """

    def __init__(self, label: str, items: list[tuple[str, str]]):
        self.operation_id = generate_operation_id()
        self.label = label
        self.items = {item_id: BulkProgressItem(item_id, name) for item_id, name in items}
        self._completed: list[BulkProgressItem] = []

    def mark(self, item_id: str, status: ItemStatus, error: str | None = None) -> BulkProgressData:
        item = self.items[item_id]
        item.status = status
        item.error = error
        if status in ("done", "failed"):
            self._completed.append(item)
        return self.snapshot(current_item=item)

    def snapshot(self, current_item: BulkProgressItem | None = None) -> BulkProgressData:
        return BulkProgressData(
            operation_id=self.operation_id,
            operation_label=self.label,
            current=len(self._completed),
            total=len(self.items),
            current_item=BulkProgressItem(**vars(current_item)) if current_item else None,
            completed_items=[BulkProgressItem(**vars(item)) for item in self._completed],
        )


# ============================================================================
# UI Commands
# ============================================================================


@dataclass
class UICommand:
    """Instruction for the client (navigate, notify, open a modal, start a bulk flow)."""

    type: str
    action: Optional[str] = None
    path: Optional[str] = None
    message: Optional[str] = None
    variant: Optional[str] = None
    params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "type": self.type,
            "action": self.action,
            "path": self.path,
            "message": self.message,
            "variant": self.variant,
            "params": self.params,
        })


# ============================================================================
# Step Updates
# ============================================================================


@dataclass
class StepUpdate:
    type: StepType
    message: str
    step: Optional[int] = None
    total_steps: Optional[int] = None
    agent_name: Optional[str] = None
    action: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    bulk_progress: Optional[BulkProgressData] = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "type": self.type.value,
            "message": self.message,
            "step": self.step,
            "totalSteps": self.total_steps,
            "agentName": self.agent_name,
            "action": self.action,
            "data": self.data,
            "bulkProgress": self.bulk_progress.to_dict() if self.bulk_progress else None,
            "timestamp": self.timestamp,
        })


class StepEmitter:
    """Produces the ordered step updates of one turn.

    Every update is kept in ``steps`` and, when a queue is given, pushed
    to it as soon as it is emitted. After ``complete`` nothing more can
    be emitted.
    """

    def __init__(self, queue: asyncio.Queue | None = None):
        self.queue = queue
        self.steps: list[StepUpdate] = []
        self.completed = False

    def emit(self, update: StepUpdate) -> StepUpdate:
        if self.completed:
            raise RuntimeError("Turn already completed; no more steps can be emitted")
        update.step = len(self.steps) + 1
        self.steps.append(update)
        if update.type == StepType.COMPLETE:
            self.completed = True
        if self.queue is not None:
            self.queue.put_nowait(update)
        logger.debug(f"step {update.step} {update.type.value}: {update.message}")
        return update

    def planning(self, message: str) -> StepUpdate:
        return self.emit(StepUpdate(StepType.PLANNING, message))

    def executing(
        self,
        message: str,
        agent_name: str | None = None,
        action: str | None = None,
        data: dict[str, Any] | None = None,
        bulk_progress: BulkProgressData | None = None,
    ) -> StepUpdate:
        return self.emit(StepUpdate(
            StepType.EXECUTING,
            message,
            agent_name=agent_name,
            action=action,
            data=data,
            bulk_progress=bulk_progress,
        ))

    def synthesizing(self, message: str) -> StepUpdate:
        return self.emit(StepUpdate(StepType.SYNTHESIZING, message))

    def complete(self, message: str) -> StepUpdate:
        return self.emit(StepUpdate(StepType.COMPLETE, message))
