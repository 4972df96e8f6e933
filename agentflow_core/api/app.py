"""Streaming HTTP API for agent runs."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..core.logging import setup_logging
from ..runtime.base import RunOptions
from ..runtime.hooks import HookName
from ..runtime.pipeline import AgentRunPipeline
from ..streaming.protocols import server_hooks

logger = structlog.get_logger(__name__)


class RunOptionsInput(BaseModel):
    """Run options accepted over HTTP."""

    session_id: Optional[str] = None
    run_id: Optional[str] = None
    user_id: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    voice: bool = False
    save_history: bool = True
    wanted_responses: Optional[List[str]] = None
    timeout: Optional[float] = None

    def to_options(self) -> RunOptions:
        return RunOptions(**self.model_dump())


class RunRequest(BaseModel):
    inputs: Dict[str, Any] = Field(default_factory=dict)
    options: RunOptionsInput = Field(default_factory=RunOptionsInput)
    hooks: Optional[List[HookName]] = None


class HealthResponse(BaseModel):
    status: str
    agents: List[str]


def create_app(pipelines: Dict[str, AgentRunPipeline]) -> FastAPI:
    """
    Build the API for a set of agents.

    Args:
        pipelines: Pipelines keyed by agent id
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_starting", agents=list(pipelines))
        yield
        logger.info("api_stopping")

    app = FastAPI(
        title="AgentFlow",
        description="Agent run streaming API",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_pipeline(agent_id: str) -> AgentRunPipeline:
        pipeline = pipelines.get(agent_id)
        if pipeline is None:
            raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")
        return pipeline

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check."""
        return HealthResponse(status="healthy", agents=list(pipelines))

    @app.post("/agents/{agent_id}/run")
    async def run_agent(agent_id: str, request: RunRequest):
        """
        Run an agent and stream its events.

        Each event is written as a ``<SCOOPSTREAM>`` frame.
        """
        pipeline = get_pipeline(agent_id)

        async def frame_generator() -> AsyncIterator[str]:
            queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
            hooks = server_hooks(queue.put, request.hooks)
            task = asyncio.create_task(
                pipeline.run(request.inputs, request.options.to_options(), hooks)
            )
            task.add_done_callback(lambda _: queue.put_nowait(None))

            try:
                while True:
                    frame = await queue.get()
                    if frame is None:
                        break
                    yield frame
            finally:
                if not task.done():
                    logger.info("run_stream_closed", agent_id=agent_id)
                    task.cancel()

        return StreamingResponse(
            frame_generator(),
            media_type="text/plain",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/agents/{agent_id}/sessions/{session_id}/history")
    async def session_history(agent_id: str, session_id: str):
        """Stored conversation of a session."""
        pipeline = get_pipeline(agent_id)
        messages = await pipeline.store.get_history(session_id)
        return {"session_id": session_id, "messages": [m.model_dump(mode="json") for m in messages]}

    return app


def serve(pipelines: Dict[str, AgentRunPipeline], settings: Optional[Settings] = None) -> None:
    """Run the API with uvicorn on the configured host and port."""
    import uvicorn

    settings = settings or get_settings()
    uvicorn.run(
        create_app(pipelines),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


__all__ = ["RunOptionsInput", "RunRequest", "create_app", "serve"]
