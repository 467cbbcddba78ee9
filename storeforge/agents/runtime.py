"""
Agent Runtime for StoreForge.

A bounded tool loop between a chat model and a fixed set of tools.

Each step asks the model for its next move given the running
transcript. Proposed calls to ``ExecutableTool``s run in the requested
order and their results are appended to the transcript. A call to a
``PauseTool`` ends the run immediately and hands its validated payload
back to the caller, who resumes later with a new turn.

Tool failures (an executor raising, a ``{"success": False}`` result, or
arguments failing validation) are returned to the model as failed tool
results and never abort the loop. A failed model call ends the run with
``ModelInvocationError``.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ValidationError

from storeforge.agents.errors import ModelInvocationError, ToolExecutionError, ValidationFailure
from storeforge.llm.base import LLMError, LLMProvider
from storeforge.llm.models import LLMMessage, LLMResponse, ToolCall
from storeforge.utils.logging import get_logger, log_error

logger = get_logger("agents.runtime")


# ============================================================================
# Tools
# ============================================================================


ToolExecutor = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class ExecutableTool:
    """A tool the runtime executes itself.

    ``execute`` receives the validated ``input_model`` instance.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    execute: ToolExecutor


@dataclass(frozen=True)
class PauseTool:
    """A tool without an executor. Calling it suspends the run."""

    name: str
    description: str
    input_model: type[BaseModel]


AgentTool = ExecutableTool | PauseTool


def tool_spec(tool: AgentTool) -> dict[str, Any]:
    """OpenAI ``tools`` entry for a tool."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_model.model_json_schema(),
        },
    }


# ============================================================================
# Stop Conditions
# ============================================================================


StopCondition = Callable[[Sequence["StepRecord"]], bool]


def step_count_is(max_steps: int) -> StopCondition:
    """Stop once ``max_steps`` steps have run."""
    if max_steps < 1:
        raise ValueError("max_steps must be at least 1")

    def condition(steps: Sequence[StepRecord]) -> bool:
        return len(steps) >= max_steps

    return condition


# ============================================================================
# Results
# ============================================================================


@dataclass
class ToolResult:
    """Outcome of one tool call within a step."""

    tool_name: str
    call_id: str
    args: dict[str, Any]
    output: Any
    success: bool
    error: str | None = None


@dataclass
class PauseRequest:
    """Payload returned when the model invoked a pause tool."""

    tool_name: str
    call_id: str
    payload: dict[str, Any]


@dataclass
class StepRecord:
    index: int
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    pause: PauseRequest | None = None


@dataclass
class RunResult:
    """Final text, ordered steps and the pause payload, if any."""

    text: str
    steps: list[StepRecord]
    finish_reason: Literal["final", "pause", "step_limit"]
    pause: PauseRequest | None = None

    @property
    def paused(self) -> bool:
        return self.pause is not None

    @property
    def tool_results(self) -> list[ToolResult]:
        return [result for step in self.steps for result in step.tool_results]

    def outputs_for(self, tool_name: str, successful_only: bool = False) -> list[Any]:
        return [
            r.output for r in self.tool_results
            if r.tool_name == tool_name and (r.success or not successful_only)
        ]


class ActionLogger(Protocol):
    """Receives one record per executed tool call."""

    def record_action(
        self,
        agent_name: str,
        tool_name: str,
        args: dict[str, Any],
        output: Any,
        success: bool,
        duration_ms: int,
    ) -> None:
        ...


StepCallback = Callable[[StepRecord], Awaitable[None]]


# ============================================================================
# Runtime
# ============================================================================


class AgentRuntime:
    """Bounded model + tools conversation loop.

    Usage:
        runtime = AgentRuntime(
            provider=provider,
            model="google/gemini-2.5-flash",
            instructions="You group product images...",
            tools=[analyze_images_tool],
            stop_when=step_count_is(3),
            name="vision",
        )
        result = await runtime.run("Group these images: ...")
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        instructions: str,
        tools: Iterable[AgentTool] = (),
        stop_when: StopCondition | None = None,
        name: str = "agent",
        temperature: float = 0.4,
        max_tokens: int | None = None,
        action_logger: ActionLogger | None = None,
        on_step: StepCallback | None = None,
    ):
        self.provider = provider
        self.model = model
        self.instructions = instructions
        self.name = name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.stop_when = stop_when or step_count_is(10)
        self.action_logger = action_logger
        self.on_step = on_step

        self.tools: dict[str, AgentTool] = {}
        for tool in tools:
            if tool.name in self.tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self.tools[tool.name] = tool

        self._tool_specs = [tool_spec(t) for t in self.tools.values()]

    async def run(self, messages: str | Sequence[dict[str, Any] | LLMMessage]) -> RunResult:
        """Run the loop until a final answer, a pause, or the stop condition.

        Args:
            messages: A prompt string, or a history of ``{"role", "content"}``
                entries / ``LLMMessage`` objects ending with the user's turn

        Raises:
            ModelInvocationError: If the model call fails
        """
        transcript = [LLMMessage.system(self.instructions)]
        if isinstance(messages, str):
            transcript.append(LLMMessage.user(messages))
        else:
            transcript.extend(
                m if isinstance(m, LLMMessage) else LLMMessage.from_dict(m) for m in messages
            )

        steps: list[StepRecord] = []

        while True:
            response = await self._call_model(transcript)
            step = StepRecord(index=len(steps), text=response.content, tool_calls=response.tool_calls)
            steps.append(step)

            if not response.has_tool_calls:
                await self._notify(step)
                return RunResult(text=response.content, steps=steps, finish_reason="final")

            transcript.append(LLMMessage.assistant(response.content or None, response.tool_calls))

            for call in response.tool_calls:
                tool = self.tools.get(call.name)

                if isinstance(tool, PauseTool):
                    try:
                        payload = self._validate(tool, call)
                    except ValidationFailure as e:
                        logger.warning(f"[{self.name}] {e}")
                        result = ToolResult(call.name, call.id, call.arguments, None, False, str(e))
                    else:
                        step.pause = PauseRequest(
                            tool_name=tool.name,
                            call_id=call.id,
                            payload=payload.model_dump(mode="json"),
                        )
                        break
                else:
                    result = await self._execute(tool, call)

                step.tool_results.append(result)
                transcript.append(
                    LLMMessage.tool(call.id, call.name, self._result_payload(result))
                )

            await self._notify(step)

            if step.pause is not None:
                logger.info(f"[{self.name}] paused on {step.pause.tool_name}")
                return RunResult(
                    text=response.content,
                    steps=steps,
                    finish_reason="pause",
                    pause=step.pause,
                )

            if self.stop_when(steps):
                logger.info(f"[{self.name}] stopped after {len(steps)} steps")
                return RunResult(text=response.content, steps=steps, finish_reason="step_limit")

    async def _call_model(self, transcript: list[LLMMessage]) -> LLMResponse:
        try:
            raw = await self.provider.complete(
                messages=[m.to_api_format() for m in transcript],
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                tools=self._tool_specs or None,
            )
        except LLMError as e:
            log_error(logger, f"{self.name}.model_call", e, {"model": self.model})
            raise ModelInvocationError.from_llm_error(e, self.name) from e
        return LLMResponse.from_api_response(raw)

    async def _execute(self, tool: AgentTool | None, call: ToolCall) -> ToolResult:
        start = time.perf_counter()

        try:
            if tool is None:
                raise ValidationFailure(call.name, f"unknown tool '{call.name}'")
            args = self._validate(tool, call)
            output = await tool.execute(args)
        except ValidationFailure as e:
            logger.warning(f"[{self.name}] {e}")
            result = ToolResult(call.name, call.id, call.arguments, None, False, str(e))
        except ToolExecutionError as e:
            logger.warning(f"[{self.name}] {call.name} failed: {e}")
            result = ToolResult(call.name, call.id, call.arguments, None, False, str(e))
        except Exception as e:
            log_error(logger, f"{self.name}.{call.name}", e)
            result = ToolResult(call.name, call.id, call.arguments, None, False, f"{type(e).__name__}: {e}")
        else:
            failed = isinstance(output, dict) and output.get("success") is False
            error = output.get("error") if failed else None
            if failed:
                logger.warning(f"[{self.name}] {call.name} reported failure: {error}")
            else:
                logger.info(f"[{self.name}] {call.name} completed")
            result = ToolResult(call.name, call.id, call.arguments, output, not failed, error)

        if self.action_logger is not None and tool is not None:
            try:
                self.action_logger.record_action(
                    agent_name=self.name,
                    tool_name=call.name,
                    args=call.arguments,
                    output=result.output if result.success else {"error": result.error},
                    success=result.success,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )
            except Exception as e:
                log_error(logger, f"{self.name}.record_action", e, {"tool": call.name})

        return result

    def _validate(self, tool: AgentTool, call: ToolCall) -> BaseModel:
        if call.parse_error:
            raise ValidationFailure(call.name, call.parse_error)
        try:
            return tool.input_model.model_validate(call.arguments)
        except ValidationError as e:
            raise ValidationFailure.from_pydantic(call.name, e) from e

    @staticmethod
    def _result_payload(result: ToolResult) -> Any:
        if result.success or result.output is not None:
            return result.output
        return {"success": False, "error": result.error}

    async def _notify(self, step: StepRecord) -> None:
        if self.on_step is not None:
            await self.on_step(step)
