"""
FastAPI application factory.

Exposes the agent runtime over HTTP:
- chat (one full turn, JSON response)
- streaming chat (server-sent events while the turn runs)
- session listing and introspection
- health
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..agent import AgentLoop
from ..config import Settings, get_settings
from ..errors import AgentError, SessionBusyError, SessionNotFoundError
from ..runtime import build_agent_loop

logger = structlog.get_logger()


class ChatRequest(BaseModel):
    """A user message for the agent."""

    message: str = Field(min_length=1)
    session_id: str | None = None
    current_workout: dict[str, Any] | None = None


def sse(event: str, payload: dict[str, Any]) -> str:
    """Encode one server-sent event."""
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"


def get_agent_loop(request: Request) -> AgentLoop:
    loop = getattr(request.app.state, "agent_loop", None)
    if loop is None:
        raise HTTPException(status_code=503, detail="Agent not initialized")
    return loop


def create_app(settings: Settings | None = None, agent_loop: AgentLoop | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        app.state.agent_loop = agent_loop or await build_agent_loop(settings)
        logger.info("Agent runtime ready", tools=app.state.agent_loop.registry.list_tools())

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Tool-calling agent runtime for a personal trainer app",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionBusyError)
    async def session_busy(request: Request, exc: SessionBusyError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    async def require_user(
        x_user_id: str = Header(...),
        authorization: str | None = Header(None),
    ) -> str:
        """Check the bearer token (when configured) and return the caller's user id."""
        if settings.api_token and authorization != f"Bearer {settings.api_token}":
            raise HTTPException(status_code=401, detail="Invalid authorization")
        return x_user_id

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        loop = getattr(request.app.state, "agent_loop", None)
        return {
            "status": "healthy",
            "version": __version__,
            "agent_ready": loop is not None,
            "llm_configured": bool(
                settings.anthropic_api_key
                or settings.openai_api_key
                or settings.openrouter_api_key
            ),
            "tools": loop.registry.list_tools() if loop else [],
        }

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #
    @app.post("/api/agent/chat")
    async def chat(
        body: ChatRequest,
        user_id: str = Depends(require_user),
        loop: AgentLoop = Depends(get_agent_loop),
    ):
        """Run one full turn and return its actions."""
        result = await loop.run_turn(
            user_id,
            body.message,
            body.session_id,
            current_workout=body.current_workout,
        )
        return result.to_dict()

    @app.post("/api/agent/stream")
    async def stream(
        body: ChatRequest,
        user_id: str = Depends(require_user),
        loop: AgentLoop = Depends(get_agent_loop),
    ):
        """Run one turn, streaming progress as server-sent events."""
        queue: asyncio.Queue = asyncio.Queue()
        cancel_event = asyncio.Event()

        async def on_event(name: str, payload: dict[str, Any]) -> None:
            await queue.put((name, payload))

        async def run() -> None:
            try:
                result = await loop.run_turn(
                    user_id,
                    body.message,
                    body.session_id,
                    current_workout=body.current_workout,
                    cancel_event=cancel_event,
                    on_event=on_event,
                )
                await queue.put(("done", result.to_dict()))
            except AgentError as e:
                await queue.put(("error", {"message": str(e)}))
            except Exception as e:
                logger.error("Streaming turn failed", user_id=user_id, error=str(e))
                await queue.put(("error", {"message": "Internal error"}))
            finally:
                await queue.put(None)

        async def event_stream() -> AsyncGenerator[str, None]:
            task = asyncio.create_task(run())
            try:
                while True:
                    item = await queue.get()
                    if item is None:
                        break
                    yield sse(*item)
            finally:
                # Client went away: stop the loop at the next iteration
                cancel_event.set()
                await task

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    @app.get("/api/agent/sessions")
    async def list_sessions(
        limit: int = 10,
        user_id: str = Depends(require_user),
        loop: AgentLoop = Depends(get_agent_loop),
    ):
        """List the caller's sessions, most recent first."""
        sessions = await loop.store.list_sessions(user_id, limit=limit)
        return {"sessions": [s.to_dict() for s in sessions]}

    @app.post("/api/agent/sessions")
    async def create_session(
        user_id: str = Depends(require_user),
        loop: AgentLoop = Depends(get_agent_loop),
    ):
        """Start a fresh session."""
        session = await loop.store.create_session(user_id)
        return session.to_dict()

    @app.get("/api/agent/sessions/{session_id}")
    async def get_session(
        session_id: str,
        user_id: str = Depends(require_user),
        loop: AgentLoop = Depends(get_agent_loop),
    ):
        """Session details, recent events and token usage."""
        state = await loop.get_session_state(session_id)
        if state["session"]["user_id"] != user_id:
            raise SessionNotFoundError(session_id)
        return state

    return app
