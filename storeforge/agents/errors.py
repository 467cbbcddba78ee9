"""
Error taxonomy for agent runs.

Only ``ModelInvocationError`` escapes a run. Tool execution and
validation failures are fed back to the model as failed tool results,
ownership violations surface as zero-row results, and parse failures
are recovered with deterministic fallbacks where they occur.
"""

from __future__ import annotations

from pydantic import ValidationError

from storeforge.llm.base import LLMError


class AgentError(Exception):
    """Base exception for agent failures."""


class ModelInvocationError(AgentError):
    """The generative backend call itself failed. Terminal for the run."""

    def __init__(self, message: str, agent_name: str = "", retryable: bool = False):
        super().__init__(message)
        self.agent_name = agent_name
        self.retryable = retryable

    @classmethod
    def from_llm_error(cls, error: LLMError, agent_name: str) -> "ModelInvocationError":
        return cls(
            f"{agent_name}: model call failed: {error}",
            agent_name=agent_name,
            retryable=error.transient,
        )


class ToolExecutionError(AgentError):
    """Raised by a tool executor; the message is returned to the model."""


class ParseFailure(AgentError):
    """Generated text did not match the expected structured shape."""


class ValidationFailure(AgentError):
    """Tool input failed schema checks before execution."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid input for {tool_name}: {message}")
        self.tool_name = tool_name

    @classmethod
    def from_pydantic(cls, tool_name: str, error: ValidationError) -> "ValidationFailure":
        problems = "; ".join(
            f"{'.'.join(str(p) for p in issue['loc']) or 'input'}: {issue['msg']}"
            for issue in error.errors()
        )
        return cls(tool_name, problems)
