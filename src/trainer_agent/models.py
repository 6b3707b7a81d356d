"""
Database models for trainer-agent

Uses SQLAlchemy 2.0 async ORM for database operations.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, make_url
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class EventType(str, Enum):
    """Event types stored in a session's log."""
    USER_MESSAGE = "user_message"
    KNOWLEDGE = "knowledge"
    ARTIFACT = "artifact"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"  # observability only, never part of model context


CONTEXT_EVENT_TYPES = (
    EventType.USER_MESSAGE.value,
    EventType.KNOWLEDGE.value,
    EventType.ARTIFACT.value,
    EventType.TOOL_CALL.value,
    EventType.TOOL_RESULT.value,
)


class SessionStatus(str, Enum):
    """Outcome of the latest turn on a session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class Session(Base):
    """One continuous conversation for one user."""

    __tablename__ = "agent_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    # Last event sequence covered by the provider-side prompt cache
    cache_boundary_sequence: Mapped[int] = mapped_column(Integer, default=-1)
    # Highest sequence number handed out so far
    last_sequence: Mapped[int] = mapped_column(Integer, default=-1)

    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.ACTIVE.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    # Relationships
    events: Mapped[list["Event"]] = relationship(
        "Event", back_populates="session", cascade="all, delete-orphan", order_by="Event.sequence_number"
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "cache_boundary_sequence": self.cache_boundary_sequence,
            "last_sequence": self.last_sequence,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Event(Base):
    """Immutable, sequence-numbered record of something that happened in a session."""

    __tablename__ = "agent_session_events"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence_number", name="uq_session_sequence"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agent_sessions.id", ondelete="CASCADE"), index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer)

    event_type: Mapped[str] = mapped_column(String(20))
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    session: Mapped["Session"] = relationship("Session", back_populates="events")

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "sequence_number": self.sequence_number,
            "event_type": self.event_type,
            "data": self.data,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UsageLog(Base):
    """Token usage for a single model call, including prompt-cache reads and writes."""

    __tablename__ = "usage_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agent_sessions.id", ondelete="CASCADE"), index=True
    )

    provider: Mapped[str] = mapped_column(String(50))
    model: Mapped[str] = mapped_column(String(100))
    purpose: Mapped[str] = mapped_column(String(20), default="agent")

    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cache_read_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cache_write_tokens: Mapped[int] = mapped_column(Integer, default=0)
    # Fractional cents, priced at the time of the call
    cost_cents: Mapped[float] = mapped_column(Float, default=0.0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


async def init_database(database_url: str) -> async_sessionmaker:
    """Initialize the database and return session maker."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)
