"""
StoreForge agents.

The runtime, error taxonomy and shared schemas are exported here. Agent
classes are imported from their own modules (``storeforge.agents.manager``,
``storeforge.agents.vision``, ...).
"""

from storeforge.agents.errors import (
    AgentError,
    ModelInvocationError,
    ParseFailure,
    ToolExecutionError,
    ValidationFailure,
)
from storeforge.agents.runtime import (
    AgentRuntime,
    ExecutableTool,
    PauseRequest,
    PauseTool,
    RunResult,
    StepRecord,
    ToolResult,
    step_count_is,
)
from storeforge.agents.schemas import (
    AgentContext,
    ConfirmationGrant,
    DraftStatus,
    ImageGroup,
    ProductDraft,
    StoreProduct,
    WorkflowVariant,
)

__all__ = [
    "AgentError",
    "ModelInvocationError",
    "ParseFailure",
    "ToolExecutionError",
    "ValidationFailure",
    "AgentRuntime",
    "ExecutableTool",
    "PauseRequest",
    "PauseTool",
    "RunResult",
    "StepRecord",
    "ToolResult",
    "step_count_is",
    "AgentContext",
    "ConfirmationGrant",
    "DraftStatus",
    "ImageGroup",
    "ProductDraft",
    "StoreProduct",
    "WorkflowVariant",
]
