"""
Turn streaming.

Runs the Manager for one request and turns everything it does into an
ordered stream of frames:

    step* -> response -> done

or, when the model call fails, ``step* -> error`` with no ``done``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from storeforge.agents.base import AgentDeps
from storeforge.agents.errors import ModelInvocationError
from storeforge.agents.manager import ManagerAgent, ManagerTurn
from storeforge.agents.prompts import PromptManager
from storeforge.agents.schemas import AgentContext, ConfirmationGrant
from storeforge.app.config import AgentConfig
from storeforge.llm.base import LLMProvider
from storeforge.llm.provider_factory import ModelSelector
from storeforge.services.grouping import ImageGrouper
from storeforge.services.pricing import PricingService
from storeforge.services.ui_renderer import extract_ui_components
from storeforge.storage.database import DatabaseManager, ScopedActionLogger
from storeforge.streaming.steps import StepEmitter, StepUpdate
from storeforge.utils.ids import generate_id
from storeforge.utils.logging import get_logger, log_error, log_operation

logger = get_logger("streaming.turn")

FrameType = Literal["step", "response", "error", "done"]

_END = object()


class TurnRequest(BaseModel):
    """One inbound chat turn."""

    messages: list[dict[str, Any]] = Field(min_length=1, description="History of {role, content}")
    context: AgentContext
    image_urls: list[str] = Field(default_factory=list, description="Previously stored image URLs")
    inline_images: list[str] = Field(default_factory=list, description="Images sent with this turn (data URLs)")
    answered_pause: Optional[dict[str, Any]] = Field(
        default=None,
        description="The ask_user payload this turn answers",
    )

    @property
    def confirmation(self) -> ConfirmationGrant | None:
        pause = self.answered_pause
        if not pause or pause.get("intent") != "persist":
            return None
        draft_ids = pause.get("draft_ids")
        return ConfirmationGrant(draft_ids=tuple(draft_ids) if draft_ids else None)

    @property
    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.get("role") == "user":
                content = message.get("content")
                return content if isinstance(content, str) else json.dumps(content)
        return ""


@dataclass
class StreamFrame:
    type: FrameType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def step(cls, update: StepUpdate) -> "StreamFrame":
        return cls("step", {"step": update.to_dict()})

    @classmethod
    def response(cls, response: dict[str, Any]) -> "StreamFrame":
        return cls("response", {"response": response})

    @classmethod
    def error(cls, error: str, details: str, retryable: bool, retry_message: str) -> "StreamFrame":
        return cls("error", {
            "error": error,
            "details": details,
            "retryable": retryable,
            "retry_message": retry_message,
        })

    @classmethod
    def done(cls) -> "StreamFrame":
        return cls("done")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}


def format_sse(frame: StreamFrame) -> str:
    """Encode a frame as one server-sent event."""
    return f"data: {json.dumps(frame.to_dict(), ensure_ascii=False, default=str)}\n\n"


class TurnStreamer:
    """Builds a Manager per request and streams its turn.

    Usage:
        streamer = TurnStreamer(provider, models, db, config.agents)
        async for frame in streamer.stream(request):
            print(format_sse(frame))
    """

    def __init__(
        self,
        provider: LLMProvider,
        models: ModelSelector,
        db: DatabaseManager,
        config: AgentConfig,
        grouper: ImageGrouper | None = None,
        pricing: PricingService | None = None,
        prompts: PromptManager | None = None,
    ):
        self.provider = provider
        self.models = models
        self.db = db
        self.config = config
        self.grouper = grouper
        self.pricing = pricing
        self.prompts = prompts
        self._detached: set[asyncio.Task] = set()

    def _detach(self, task: asyncio.Task) -> None:
        """Let a turn whose client went away run to completion in the background."""
        logger.warning("Client disconnected mid-turn; letting the turn finish")
        self._detached.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_error(logger, "stream.detached_turn", task.exception())

    async def wait_for_detached(self) -> None:
        """Wait until turns abandoned by their clients have finished."""
        if self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    def _prepare(self, request: TurnRequest) -> tuple[AgentContext, list[dict[str, Any]]]:
        context = request.context
        messages = [dict(m) for m in request.messages]
        images = request.image_urls + request.inline_images
        if not images:
            return context, messages

        if context.batch_id is None:
            context = context.model_copy(update={"batch_id": generate_id("BATCH")})

        listing = "\n".join(f"- {url}" for url in images)
        last = messages[-1]
        if last.get("role") == "user" and isinstance(last.get("content"), str):
            last["content"] = f"{last['content']}\n\nUploaded images:\n{listing}"
        else:
            messages.append({"role": "user", "content": f"Uploaded images:\n{listing}"})
        return context, messages

    async def stream(self, request: TurnRequest) -> AsyncIterator[StreamFrame]:
        queue: asyncio.Queue = asyncio.Queue()
        emitter = StepEmitter(queue)
        context, messages = self._prepare(request)

        deps = AgentDeps(
            provider=self.provider,
            models=self.models,
            db=self.db,
            config=self.config,
            prompts=self.prompts,
            action_logger=ScopedActionLogger(self.db, context.merchant_id, context.store_id),
        )
        manager = ManagerAgent(
            deps,
            context,
            emitter=emitter,
            grouper=self.grouper,
            pricing=self.pricing,
            confirmation=request.confirmation,
        )

        emitter.planning("Analyzing your request...")

        async def drive() -> ManagerTurn:
            try:
                return await manager.run_turn(messages)
            finally:
                queue.put_nowait(_END)

        task = asyncio.create_task(drive())

        # Writes already in flight are never cancelled with the stream.
        try:
            while True:
                update = await queue.get()
                if update is _END:
                    break
                yield StreamFrame.step(update)

            try:
                turn = await asyncio.shield(task)
            except ModelInvocationError as e:
                yield StreamFrame.error(
                    error="The assistant could not respond",
                    details=str(e),
                    retryable=e.retryable,
                    retry_message=request.last_user_message,
                )
                return
            except Exception as e:
                log_error(logger, "stream", e, {"merchant_id": context.merchant_id})
                yield StreamFrame.error(
                    error="Unexpected error",
                    details=f"{type(e).__name__}: {e}",
                    retryable=False,
                    retry_message=request.last_user_message,
                )
                return
        finally:
            if not task.done():
                self._detach(task)

        if turn.result.tool_results:
            yield StreamFrame.step(emitter.synthesizing("Preparing response..."))
        yield StreamFrame.step(emitter.complete("Done"))

        log_operation(logger, "turn_complete", {
            "tools": len(turn.result.tool_results),
            "steps": len(emitter.steps),
            "paused": turn.pause is not None,
        })

        yield StreamFrame.response({
            "content": turn.text,
            "tool_invocations": turn.tool_invocations(),
            "steps": [s.to_dict() for s in emitter.steps],
            "ui_commands": [c.to_dict() for c in turn.ui_commands],
            "ui_components": extract_ui_components(turn.result.tool_results, turn.pause),
            "pause": turn.pause.payload if turn.pause else None,
        })
        yield StreamFrame.done()
