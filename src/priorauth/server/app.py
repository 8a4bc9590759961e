"""FastAPI transport for the coverage agent.

Endpoints:
    GET  /health            service name and version
    POST /api/chat/agents   run the agent; streams answer text, or returns
                            intermediate steps when show_intermediate_steps
                            is set
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse, StreamingResponse

from priorauth.agent.schema import AgentEvent
from priorauth.config import load_settings
from priorauth.runtime import build_runtime
from priorauth.server.transport import (
    ChatRequest,
    error_status,
    messages_to_history,
    steps_payload,
)
from priorauth.usage.reporter import report_in_background

if TYPE_CHECKING:
    from priorauth.config import Settings
    from priorauth.runtime import Runtime

logger = structlog.get_logger()

SERVICE_NAME = "priorauth"
VERSION = "0.1.0"


def _error_response(exc: BaseException) -> JSONResponse:
    return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=error_status(exc))


async def _first_text(events: AsyncIterator[AgentEvent]) -> tuple[str | None, bool]:
    """Advance to the first visible text chunk. Returns (text, run_finished)."""
    async for event in events:
        if event.kind == "model_chunk" and event.content:
            return event.content, False
        if event.kind == "final":
            return None, True
    return None, True


def create_app(runtime: Runtime | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the app. Without a runtime, one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        if owned:
            app.state.runtime = build_runtime(settings or load_settings())
        else:
            app.state.runtime = runtime
        logger.info("server_started", service=SERVICE_NAME, version=VERSION)
        yield
        if owned:
            await app.state.runtime.aclose()
        logger.info("server_stopped")

    app = FastAPI(
        title=SERVICE_NAME,
        version=VERSION,
        description="Prior-authorization coverage assistant over CMS, Carelon and Evolent sources.",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}

    @app.post("/api/chat/agents")
    async def chat_agents(
        request: ChatRequest,
        x_user_id: str | None = Header(default=None),
    ):
        rt: Runtime = app.state.runtime
        history = messages_to_history(request.messages)
        if not history:
            return JSONResponse(
                {"error": "messages must contain at least one user or assistant message"},
                status_code=400,
            )

        if request.show_intermediate_steps:
            try:
                result = await rt.loop.run(history)
            except Exception as exc:
                logger.error("agent_run_failed", error=str(exc)[:200], status=error_status(exc))
                return _error_response(exc)
            report_in_background(rt.usage, x_user_id)
            return JSONResponse(steps_payload(result))

        events = rt.loop.stream(history)
        try:
            first, finished = await _first_text(events)
        except Exception as exc:
            logger.error("agent_stream_failed", error=str(exc)[:200], status=error_status(exc))
            await events.aclose()
            return _error_response(exc)

        async def body() -> AsyncIterator[str]:
            completed = finished
            if first:
                yield first
            if not finished:
                try:
                    async for event in events:
                        if event.kind == "model_chunk" and event.content:
                            yield event.content
                        elif event.kind == "final":
                            completed = True
                except Exception as exc:
                    # Headers are already sent; ending the body is all that is left.
                    logger.error("agent_stream_aborted", error=str(exc)[:200])
                    return
            if completed:
                report_in_background(rt.usage, x_user_id)

        return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

    return app
