"""
Conversation session.

Holds the running history of one merchant/store chat and the pause the
Manager last ended on. Answering a pause asked with intent ``persist``
is what grants the next turn permission to persist drafts.

``reset`` captures an immutable snapshot of the history before clearing
it, and only that snapshot is handed to the background archive task.
"""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional

from storeforge.agents.schemas import AgentContext
from storeforge.storage.database import DatabaseManager
from storeforge.streaming.turn import TurnRequest
from storeforge.utils.logging import get_logger, log_error, log_operation

logger = get_logger("services.conversation")


@dataclass(frozen=True)
class ConversationSnapshot:
    merchant_id: str
    store_id: str
    messages: tuple[dict[str, Any], ...]
    started_at: datetime
    taken_at: datetime


class ConversationSession:
    """In-memory chat state for one (merchant, store) pair.

    Usage:
        session = ConversationSession(db, context)
        request = session.start_turn("Here are my new hoodies", image_urls=urls)
        ... stream the turn ...
        session.finish_turn(response["content"], response["pause"])
    """

    def __init__(self, db: DatabaseManager, context: AgentContext):
        self.db = db
        self.context = context
        self.history: list[dict[str, Any]] = []
        self.pending_pause: Optional[dict[str, Any]] = None
        self.started_at = datetime.now(UTC)
        self._archive_tasks: set[asyncio.Task] = set()

    def start_turn(
        self,
        content: str,
        image_urls: list[str] | None = None,
        inline_images: list[str] | None = None,
    ) -> TurnRequest:
        """Record the user's message and build the request for this turn."""
        answered = self.pending_pause
        self.pending_pause = None
        self.history.append({"role": "user", "content": content})

        return TurnRequest(
            messages=list(self.history),
            context=self.context,
            image_urls=image_urls or [],
            inline_images=inline_images or [],
            answered_pause=answered,
        )

    def finish_turn(self, content: str, pause: dict[str, Any] | None = None) -> None:
        """Record the assistant's reply and the pause it ended on, if any."""
        parts = [content] if content else []
        if pause is not None:
            parts.append(pause.get("question", ""))
            if pause.get("options"):
                parts.append("Options: " + ", ".join(pause["options"]))
        self.history.append({"role": "assistant", "content": "\n\n".join(p for p in parts if p)})
        self.pending_pause = pause

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            merchant_id=self.context.merchant_id,
            store_id=self.context.store_id,
            messages=tuple(dict(m) for m in self.history),
            started_at=self.started_at,
            taken_at=datetime.now(UTC),
        )

    def reset(self) -> ConversationSnapshot | None:
        """Clear the conversation and archive it in the background.

        Must be called from a running event loop. Returns the archived
        snapshot, or None when there was nothing to archive.
        """
        snapshot = self.snapshot() if self.history else None

        self.history = []
        self.pending_pause = None
        self.started_at = datetime.now(UTC)

        if snapshot is not None:
            task = asyncio.create_task(self._archive(snapshot))
            self._archive_tasks.add(task)
            task.add_done_callback(self._archive_tasks.discard)
        return snapshot

    async def _archive(self, snapshot: ConversationSnapshot) -> str | None:
        try:
            conversation_id = self.db.archive_conversation(
                merchant_id=snapshot.merchant_id,
                store_id=snapshot.store_id,
                messages=snapshot.messages,
                started_at=snapshot.started_at,
            )
        except sqlite3.Error as e:
            log_error(logger, "archive_conversation", e, {"messages": len(snapshot.messages)})
            return None

        log_operation(logger, "archive_conversation", {
            "conversation_id": conversation_id,
            "messages": len(snapshot.messages),
        })
        return conversation_id

    async def wait_for_archives(self) -> None:
        """Wait until every pending archive task has finished."""
        if self._archive_tasks:
            await asyncio.gather(*list(self._archive_tasks))
