"""
Agent loop.

One user turn:
1. Repair any tool call left without a result by an interrupted turn
2. Append the user message (and client-provided workout state)
3. Let the context selector inject newly relevant knowledge
4. Repeat: build context, call the model for exactly one tool call,
   dispatch it, until a terminal tool runs or the iteration cap is hit

Every step is recorded in the session's event log, which is the only state
carried between turns.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..data.formatters import format_current_workout
from ..data.sources import DataSourceRegistry
from ..errors import AgentError, LoopBoundError, SessionBusyError, SessionNotFoundError, TransportError
from ..llm import BaseLLM, ToolCall, create_llm
from ..models import EventType, SessionStatus
from ..services.user_data import UserDataStore
from ..services.workouts import WorkoutService
from ..tools import ToolContext, ToolDispatcher, ToolOutcome, ToolRegistry
from .context import ContextBuilder, ContextSnapshot, estimate_tokens
from .selector import ContextSelector
from .session import EventCallback, SessionStore

logger = structlog.get_logger()

CURRENT_WORKOUT_SOURCE = "current_workout_session"

TOOL_ERROR_STATUS = "Something went wrong"


class LoopState(str, Enum):
    SELECTING_CONTEXT = "selecting_context"
    CALLING_MODEL = "calling_model"
    EXECUTING_TOOL = "executing_tool"


class TurnOutcome(str, Enum):
    """How a turn ended."""

    IDLE = "idle"
    AWAITING_USER = "awaiting_user"
    INCONCLUSIVE = "inconclusive"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Tools that end the turn when they succeed
TERMINAL_TOOLS = {
    "idle": TurnOutcome.IDLE,
    "message_ask_user": TurnOutcome.AWAITING_USER,
}


@dataclass
class TurnResult:
    """Result of one user turn."""

    session_id: str
    actions: list[ToolOutcome] = field(default_factory=list)
    iterations: int = 0
    outcome: TurnOutcome = TurnOutcome.IDLE
    error: AgentError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (TurnOutcome.IDLE, TurnOutcome.AWAITING_USER)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "outcome": self.outcome.value,
            "iterations": self.iterations,
            "actions": [action.to_dict() for action in self.actions],
            "error": str(self.error) if self.error else None,
        }


async def _emit(on_event: EventCallback | None, name: str, payload: dict[str, Any]) -> None:
    if on_event is not None:
        await on_event(name, payload)


class AgentLoop:
    """Runs user turns against a session's event log."""

    def __init__(
        self,
        store: SessionStore,
        registry: ToolRegistry,
        data_sources: DataSourceRegistry,
        user_data: UserDataStore,
        llm: BaseLLM | None = None,
        selector_llm: BaseLLM | None = None,
        workouts: WorkoutService | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.registry = registry
        self.data_sources = data_sources
        self.user_data = user_data
        self.workouts = workouts or WorkoutService()
        self.llm = llm or create_llm(settings=self.settings)

        if selector_llm is None and self.settings.selector_enabled:
            selector_llm = create_llm(settings=self.settings, purpose="selector")
        self.selector = ContextSelector(
            selector_llm,
            store,
            data_sources,
            timeout_seconds=self.settings.model_timeout_seconds,
        )
        self.context_builder = ContextBuilder(store, user_data, registry)
        self.dispatcher = ToolDispatcher(
            registry,
            store,
            timeout_seconds=self.settings.tool_timeout_seconds,
        )
        self.max_iterations = self.settings.max_iterations
        self._active_sessions: set[str] = set()

    async def _resolve_session(self, user_id: str, session_id: str | None) -> str:
        if session_id is None:
            session = await self.store.get_or_create_session(user_id)
        else:
            session = await self.store.get_session(session_id)
            if session.user_id != user_id:
                raise SessionNotFoundError(session_id)
        return session.id

    async def run_turn(
        self,
        user_id: str,
        message: str,
        session_id: str | None = None,
        *,
        current_workout: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        on_event: EventCallback | None = None,
    ) -> TurnResult:
        """Process one user message until the agent goes idle or asks the user.

        Raises:
            SessionNotFoundError: ``session_id`` does not exist for this user.
            SessionBusyError: Another turn is running on the same session.
        """
        session_id = await self._resolve_session(user_id, session_id)
        if session_id in self._active_sessions:
            raise SessionBusyError(session_id)

        self._active_sessions.add(session_id)
        try:
            await self.store.set_status(session_id, SessionStatus.ACTIVE)
            result = await self._run_turn(
                user_id, session_id, message, current_workout, cancel_event, on_event
            )
        except Exception:
            await self.store.set_status(session_id, SessionStatus.ERROR)
            raise
        finally:
            self._active_sessions.discard(session_id)

        failed = result.outcome in (TurnOutcome.FAILED, TurnOutcome.INCONCLUSIVE)
        await self.store.set_status(
            session_id,
            SessionStatus.ERROR if failed else SessionStatus.COMPLETED,
        )
        logger.info(
            "Turn finished",
            session_id=session_id,
            outcome=result.outcome.value,
            iterations=result.iterations,
            actions=len(result.actions),
        )
        return result

    async def _run_turn(
        self,
        user_id: str,
        session_id: str,
        message: str,
        current_workout: dict[str, Any] | None,
        cancel_event: asyncio.Event | None,
        on_event: EventCallback | None,
    ) -> TurnResult:
        await self.store.repair_dangling_tool_calls(session_id)
        await self.store.append_event(session_id, EventType.USER_MESSAGE, {"message": message})

        if current_workout:
            await self.store.append_event(
                session_id,
                EventType.KNOWLEDGE,
                {
                    "source": CURRENT_WORKOUT_SOURCE,
                    "formatted_text": format_current_workout(current_workout),
                },
            )

        await _emit(on_event, "status", {"state": LoopState.SELECTING_CONTEXT.value})
        await self.selector.select_and_inject(session_id, user_id, message, on_event=on_event)

        context = ToolContext(
            user_id=user_id,
            session_id=session_id,
            store=self.store,
            data_sources=self.data_sources,
            user_data=self.user_data,
            workouts=self.workouts,
        )
        result = TurnResult(session_id=session_id)

        while result.iterations < self.max_iterations:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Turn cancelled", session_id=session_id, iterations=result.iterations)
                result.outcome = TurnOutcome.CANCELLED
                return result

            result.iterations += 1
            await _emit(on_event, "status", {
                "state": LoopState.CALLING_MODEL.value,
                "iteration": result.iterations,
            })
            snapshot = await self.context_builder.build(session_id)

            try:
                call = await self._call_model(session_id, snapshot)
            except TransportError as e:
                logger.error("Model call failed", session_id=session_id, error=str(e))
                await self.store.append_event(
                    session_id,
                    EventType.ERROR,
                    {"message": str(e), "context": {"stage": "model_call", "iteration": result.iterations}},
                )
                result.outcome = TurnOutcome.FAILED
                result.error = e
                return result

            await self.store.set_cache_boundary(session_id, snapshot.max_sequence)

            tool = self.registry.get(call.name)
            status_start = tool.status_start if tool else None
            status_done = tool.status_done if tool else None

            await _emit(on_event, "status", {
                "state": LoopState.EXECUTING_TOOL.value,
                "tool": call.name,
                "phase": "start",
                "message": status_start,
            })
            await _emit(on_event, "tool_start", {
                "call_id": call.id,
                "tool": call.name,
                "args": call.arguments,
            })
            outcome = await self.dispatcher.dispatch(call, context)
            result.actions.append(outcome)
            if status_start:
                await _emit(on_event, "status", {
                    "state": LoopState.EXECUTING_TOOL.value,
                    "tool": call.name,
                    "phase": "done" if outcome.success else "error",
                    "message": status_done if outcome.success else TOOL_ERROR_STATUS,
                })
            await _emit(on_event, "tool_result", outcome.to_dict())

            if outcome.success and call.name in TERMINAL_TOOLS:
                result.outcome = TERMINAL_TOOLS[call.name]
                return result

        error = LoopBoundError(self.max_iterations)
        logger.warning("Iteration cap reached", session_id=session_id, max_iterations=self.max_iterations)
        await self.store.append_event(
            session_id,
            EventType.ERROR,
            {"message": str(error), "context": {"stage": "agent_loop"}},
        )
        result.outcome = TurnOutcome.INCONCLUSIVE
        result.error = error
        return result

    async def _call_model(self, session_id: str, snapshot: ContextSnapshot) -> ToolCall:
        """Ask the model for exactly one tool call.

        Raises:
            TransportError: The call failed, timed out or produced no tool call.
        """
        timeout = self.settings.model_timeout_seconds
        logger.debug(
            "Calling model",
            session_id=session_id,
            model=self.llm.model,
            estimated_tokens=estimate_tokens(snapshot),
        )

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.llm.generate(
                    messages=snapshot.messages,
                    tools=snapshot.tools,
                    system=snapshot.system,
                    tool_choice="any",
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Model call timed out after {timeout:g}s") from e
        except Exception as e:
            raise TransportError(f"Model call failed: {e}") from e
        duration_ms = int((time.monotonic() - start) * 1000)

        await self.store.record_usage(
            session_id,
            provider=self.llm.provider_name,
            model=response.model or self.llm.model,
            usage=response.usage,
            purpose="agent",
            duration_ms=duration_ms,
        )
        logger.info(
            "Model responded",
            session_id=session_id,
            duration_ms=duration_ms,
            input_tokens=response.usage.input_tokens,
            cache_read_tokens=response.usage.cache_read_tokens,
            cache_write_tokens=response.usage.cache_write_tokens,
        )

        if not response.tool_calls:
            raise TransportError("Model response contained no tool call")
        if len(response.tool_calls) > 1:
            logger.warning(
                "Ignoring extra tool calls",
                session_id=session_id,
                ignored=[c.name for c in response.tool_calls[1:]],
            )
        return response.tool_calls[0]

    async def get_session_state(self, session_id: str) -> dict[str, Any]:
        """Session row, recent events and usage totals for introspection."""
        session = await self.store.get_session(session_id)
        events = await self.store.get_recent_events(session_id, limit=self.settings.recent_events_limit)
        return {
            "session": session.to_dict(),
            "recent_events": [event.to_dict() for event in events],
            "usage": await self.store.usage_summary(session_id),
        }
