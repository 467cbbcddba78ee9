"""
StoreForge HTTP API.

Exposes the assistant as a server-sent event stream:

    POST /assistant/stream   body: TurnRequest   ->   text/event-stream

Requires the ``api`` extra (fastapi, uvicorn).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import StreamingResponse

from storeforge.app.config import StoreForgeConfig, get_config
from storeforge.llm.provider_factory import ProviderFactory
from storeforge.storage.database import DatabaseManager
from storeforge.streaming.turn import TurnRequest, TurnStreamer, format_sse
from storeforge.utils.logging import get_logger

logger = get_logger("api.server")


def build_streamer(config: StoreForgeConfig) -> TurnStreamer:
    """Create the provider, database and streamer described by ``config``."""
    provider, models = ProviderFactory.from_config(config.llm)
    config.ensure_directories()
    db = DatabaseManager(config.db_path)
    db.initialize()
    return TurnStreamer(provider, models, db, config.agents)


def create_app(streamer: TurnStreamer | None = None, config: StoreForgeConfig | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        streamer: Streamer to serve; built from ``config`` when omitted
        config: Configuration used to build the streamer (global config by default)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "streamer", None) is None:
            app.state.streamer = build_streamer(config or get_config())
        logger.info("StoreForge API ready")
        yield
        await app.state.streamer.wait_for_detached()
        await app.state.streamer.provider.close()
        logger.info("StoreForge API stopped")

    app = FastAPI(title="StoreForge", lifespan=lifespan)
    app.state.streamer = streamer

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/assistant/stream")
    async def assistant_stream(request: TurnRequest) -> StreamingResponse:
        turn_streamer: TurnStreamer = app.state.streamer

        async def events() -> AsyncIterator[str]:
            async with aclosing(turn_streamer.stream(request)) as frames:
                async for frame in frames:
                    yield format_sse(frame)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return app
