"""
Step streaming.

Wire types are exported here; the turn streamer lives in
``storeforge.streaming.turn``.
"""

from storeforge.streaming.steps import (
    BulkProgressData,
    BulkProgressItem,
    BulkProgressTracker,
    StepEmitter,
    StepType,
    StepUpdate,
    UICommand,
)

__all__ = [
    "BulkProgressData",
    "BulkProgressItem",
    "BulkProgressTracker",
    "StepEmitter",
    "StepType",
    "StepUpdate",
    "UICommand",
]
