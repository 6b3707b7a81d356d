"""
Session and event persistence.

The event log is the single source of truth for conversation state. Sequence
numbers are handed out by an atomic increment on the session row inside the
same transaction as the insert, so two writers can never claim the same number.
"""

import asyncio
import weakref
from typing import Any, Awaitable, Callable, Iterable

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import SessionNotFoundError
from ..llm.base import TokenUsage
from ..llm.pricing import calculate_cost_cents
from ..models import Event, EventType, Session, SessionStatus, UsageLog, utcnow

logger = structlog.get_logger()

# Receives live notifications (event name, payload) while a turn runs
EventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

INTERRUPTED_RESULT = "Tool execution was interrupted before a result was recorded."


class SessionStore:
    """Append-only event store for agent sessions."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    async def create_session(self, user_id: str) -> Session:
        """Create a new session for a user."""
        async with self._session_maker() as db:
            session = Session(user_id=user_id)
            db.add(session)
            await db.commit()
            await db.refresh(session)

        logger.info("Created new session", user_id=user_id, session_id=session.id)
        return session

    async def get_session(self, session_id: str) -> Session:
        """Get a session by id."""
        async with self._session_maker() as db:
            session = await db.get(Session, session_id)

        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_or_create_session(self, user_id: str) -> Session:
        """Resume the user's most recently updated session, or start one."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Session)
                .where(Session.user_id == user_id)
                .order_by(Session.updated_at.desc(), Session.created_at.desc())
                .limit(1)
            )
            session = result.scalar_one_or_none()

        if session is None:
            return await self.create_session(user_id)
        return session

    async def list_sessions(self, user_id: str, limit: int = 10) -> list[Session]:
        """List a user's sessions, most recent first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Session)
                .where(Session.user_id == user_id)
                .order_by(Session.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def set_cache_boundary(self, session_id: str, sequence: int) -> None:
        """Advance the cache boundary. It never moves backwards."""
        async with self._session_maker() as db:
            async with db.begin():
                await db.execute(
                    update(Session)
                    .where(
                        Session.id == session_id,
                        Session.cache_boundary_sequence < sequence,
                    )
                    .values(cache_boundary_sequence=sequence)
                    .execution_options(synchronize_session=False)
                )

        logger.debug("Cache boundary advanced", session_id=session_id, sequence=sequence)

    async def set_status(self, session_id: str, status: SessionStatus | str) -> None:
        """Record the outcome of the latest turn."""
        async with self._session_maker() as db:
            async with db.begin():
                await db.execute(
                    update(Session)
                    .where(Session.id == session_id)
                    .values(status=SessionStatus(status).value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #
    async def append_event(
        self,
        session_id: str,
        event_type: EventType | str,
        data: dict[str, Any],
        duration_ms: int | None = None,
    ) -> Event:
        """Append an event, assigning the next sequence number atomically."""
        event_type = EventType(event_type).value

        async with self._lock_for(session_id):
            async with self._session_maker() as db:
                async with db.begin():
                    result = await db.execute(
                        update(Session)
                        .where(Session.id == session_id)
                        .values(
                            last_sequence=Session.last_sequence + 1,
                            updated_at=utcnow(),
                        )
                        .returning(Session.last_sequence)
                        .execution_options(synchronize_session=False)
                    )
                    sequence = result.scalar_one_or_none()
                    if sequence is None:
                        raise SessionNotFoundError(session_id)

                    event = Event(
                        session_id=session_id,
                        sequence_number=sequence,
                        event_type=event_type,
                        data=data,
                        duration_ms=duration_ms,
                        created_at=utcnow(),
                    )
                    db.add(event)

        logger.debug(
            "Event appended",
            session_id=session_id,
            sequence=sequence,
            event_type=event_type,
        )
        return event

    async def get_events(
        self,
        session_id: str,
        from_sequence: int = 0,
        event_types: Iterable[str] | None = None,
    ) -> list[Event]:
        """Get events in ascending sequence order."""
        query = (
            select(Event)
            .where(
                Event.session_id == session_id,
                Event.sequence_number >= from_sequence,
            )
            .order_by(Event.sequence_number)
        )
        if event_types is not None:
            query = query.where(Event.event_type.in_(list(event_types)))

        async with self._session_maker() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_recent_events(self, session_id: str, limit: int = 20) -> list[Event]:
        """Get the last ``limit`` events, still in ascending order."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Event)
                .where(Event.session_id == session_id)
                .order_by(Event.sequence_number.desc())
                .limit(limit)
            )
            events = list(result.scalars().all())
        events.reverse()
        return events

    async def get_artifact(self, session_id: str, artifact_id: str) -> dict[str, Any] | None:
        """Data of the latest artifact event with this id, or None."""
        events = await self.get_events(session_id, event_types=[EventType.ARTIFACT.value])
        for event in reversed(events):
            if event.data.get("artifact_id") == artifact_id:
                return event.data
        return None

    async def max_sequence(self, session_id: str) -> int:
        """Highest sequence number in the session, -1 when empty."""
        session = await self.get_session(session_id)
        return session.last_sequence

    async def repair_dangling_tool_calls(self, session_id: str) -> list[Event]:
        """Close every tool call that never received a result.

        A crash between logging a tool call and logging its result leaves the
        log in a state the provider rejects. Each dangling call gets a
        synthetic failed result so context can be built again.
        """
        events = await self.get_events(
            session_id,
            event_types=(EventType.TOOL_CALL.value, EventType.TOOL_RESULT.value),
        )

        pending: dict[str, Event] = {}
        for event in events:
            call_id = event.data.get("call_id")
            if event.event_type == EventType.TOOL_CALL.value:
                pending[call_id] = event
            else:
                pending.pop(call_id, None)

        repaired = []
        for call_id, call_event in pending.items():
            tool_name = call_event.data.get("tool_name", "")
            logger.warning(
                "Repairing dangling tool call",
                session_id=session_id,
                call_id=call_id,
                tool_name=tool_name,
            )
            repaired.append(await self.append_event(
                session_id,
                EventType.TOOL_RESULT,
                {
                    "call_id": call_id,
                    "tool_name": tool_name,
                    "result": INTERRUPTED_RESULT,
                    "success": False,
                    "data": {"tool": "failure", "error": INTERRUPTED_RESULT},
                },
            ))
        return repaired

    # ------------------------------------------------------------------ #
    # Usage accounting
    # ------------------------------------------------------------------ #
    async def record_usage(
        self,
        session_id: str,
        provider: str,
        model: str,
        usage: TokenUsage,
        purpose: str = "agent",
        duration_ms: int | None = None,
    ) -> None:
        """Store token usage for one model call."""
        async with self._session_maker() as db:
            db.add(UsageLog(
                session_id=session_id,
                provider=provider,
                model=model,
                purpose=purpose,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cache_read_tokens=usage.cache_read_tokens,
                cache_write_tokens=usage.cache_write_tokens,
                cost_cents=calculate_cost_cents(model, usage),
                duration_ms=duration_ms,
            ))
            await db.commit()

    async def usage_summary(self, session_id: str) -> dict[str, Any]:
        """Aggregate token usage and prompt-cache efficiency for a session."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(
                    func.count(UsageLog.id),
                    func.coalesce(func.sum(UsageLog.input_tokens), 0),
                    func.coalesce(func.sum(UsageLog.output_tokens), 0),
                    func.coalesce(func.sum(UsageLog.cache_read_tokens), 0),
                    func.coalesce(func.sum(UsageLog.cache_write_tokens), 0),
                    func.coalesce(func.sum(UsageLog.cost_cents), 0.0),
                ).where(UsageLog.session_id == session_id)
            )
            calls, input_tokens, output_tokens, cache_read, cache_write, cost_cents = result.one()

        prompt_total = input_tokens + cache_read + cache_write
        return {
            "model_calls": calls,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_tokens": cache_read,
            "cache_write_tokens": cache_write,
            "cache_hit_rate": round(cache_read / prompt_total * 100, 1) if prompt_total else 0.0,
            "cost_cents": round(cost_cents, 4),
        }
