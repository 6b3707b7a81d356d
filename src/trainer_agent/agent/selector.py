"""
Context selector.

Before the main loop runs, a small, cheap model call decides which data
sources the agent needs for the new user message. Only sources not already
present as knowledge are fetched, so the append-only log never carries the
same source twice and the cached prefix stays intact.
"""

import asyncio
import time
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..data.sources import DataSourceRegistry
from ..llm.base import BaseLLM, LLMMessage, SystemBlock, TextBlock, ToolDefinition
from ..models import EventType
from .session import EventCallback, SessionStore

logger = structlog.get_logger()

SELECT_TOOL_NAME = "select_context"

SELECTOR_PROMPT = """You select context for a personal trainer agent.

Read the user's message and decide which data sources the agent needs to
handle it. Context is append-only: sources already loaded stay available and
must not be requested again. Select the minimum set needed; select nothing
when the message needs no user data (e.g. logging a simple exercise).

Typical needs:
- Workout generation: user_profile, user_settings, all_locations, workout_history, goals, active_preferences, exercise_distribution
- Balance or "what should I train" questions: goals, exercise_distribution
- Progress or history questions: workout_history (raise limit for longer ranges)
- Location or equipment questions: all_locations
- Units questions: user_settings
- Profile questions: user_profile

Always answer by calling the select_context tool."""


# Bounds applied to a selected source's record limit
MIN_SOURCE_LIMIT = 1
MAX_SOURCE_LIMIT = 100


class SourceSelection(BaseModel):
    source: str
    limit: int | None = None

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, value: Any) -> int | None:
        if value is None:
            return None
        try:
            limit = int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"limit must be a number, got {value!r}") from e
        return min(max(limit, MIN_SOURCE_LIMIT), MAX_SOURCE_LIMIT)


class ContextSelection(BaseModel):
    reasoning: str = ""
    sources: list[SourceSelection] = Field(default_factory=list)

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> "ContextSelection":
        """Parse selector output item by item; malformed items are dropped, not the whole selection."""
        items = arguments.get("sources")
        sources = []
        for item in items if isinstance(items, list) else []:
            try:
                sources.append(SourceSelection.model_validate(item))
            except ValidationError as e:
                logger.warning("Dropping malformed source selection", item=item, errors=e.error_count())
        reasoning = arguments.get("reasoning")
        return cls(reasoning=reasoning if isinstance(reasoning, str) else "", sources=sources)


class ContextSelector:
    """Chooses and injects newly relevant knowledge for a turn."""

    def __init__(
        self,
        llm: BaseLLM | None,
        store: SessionStore,
        data_sources: DataSourceRegistry,
        timeout_seconds: float = 30.0,
    ):
        self.llm = llm
        self.store = store
        self.data_sources = data_sources
        self.timeout_seconds = timeout_seconds

    def tool_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=SELECT_TOOL_NAME,
            description="Choose the data sources to load for this message.",
            parameters={
                "type": "object",
                "properties": {
                    "reasoning": {
                        "type": "string",
                        "description": "Brief explanation of what data is needed and why",
                    },
                    "sources": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "source": {"type": "string", "enum": self.data_sources.names},
                                "limit": {
                                    "type": ["integer", "null"],
                                    "description": "For workout_history: number of records (default 10)",
                                },
                            },
                            "required": ["source"],
                        },
                    },
                },
                "required": ["reasoning", "sources"],
            },
        )

    async def existing_sources(self, session_id: str) -> set[str]:
        """Names of sources already present as knowledge, from the start of the log."""
        events = await self.store.get_events(
            session_id,
            from_sequence=0,
            event_types=(EventType.KNOWLEDGE.value,),
        )
        return {event.data.get("source") for event in events}

    def filter_selection(self, selection: ContextSelection, existing: set[str]) -> dict[str, dict[str, Any]]:
        """Drop unknown, already-present and duplicate sources. Returns name -> params."""
        chosen: dict[str, dict[str, Any]] = {}
        known = set(self.data_sources.names)
        for item in selection.sources:
            if item.source not in known:
                logger.warning("Selector chose unknown source", source=item.source)
                continue
            if item.source in existing or item.source in chosen:
                continue
            chosen[item.source] = {"limit": item.limit} if item.limit else {}
        return chosen

    async def _select(self, session_id: str, message: str, existing: set[str]) -> ContextSelection:
        catalog = "\n".join(f"- {s['name']}: {s['description']}" for s in self.data_sources.catalog())
        prompt = (
            f'User message: "{message}"\n\n'
            f"Already loaded data sources: {', '.join(sorted(existing)) or 'none'}\n\n"
            f"<available_data_sources>\n{catalog}\n</available_data_sources>"
        )

        start = time.monotonic()
        response = await asyncio.wait_for(
            self.llm.generate(
                messages=[LLMMessage(role="user", content=[TextBlock(text=prompt)])],
                tools=[self.tool_definition()],
                system=[SystemBlock(text=SELECTOR_PROMPT)],
                tool_choice=SELECT_TOOL_NAME,
            ),
            timeout=self.timeout_seconds,
        )
        await self.store.record_usage(
            session_id,
            provider=self.llm.provider_name,
            model=response.model or self.llm.model,
            usage=response.usage,
            purpose="selector",
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        call = next((c for c in response.tool_calls if c.name == SELECT_TOOL_NAME), None)
        if call is None:
            logger.warning("Selector returned no selection", session_id=session_id)
            return ContextSelection()
        if call.parse_error:
            logger.warning("Selector arguments malformed", session_id=session_id, error=call.parse_error)
        return ContextSelection.from_arguments(call.arguments)

    async def select_and_inject(
        self,
        session_id: str,
        user_id: str,
        message: str,
        on_event: EventCallback | None = None,
    ) -> list[str]:
        """Run selection for a user message and append knowledge events.

        Returns the names of the sources injected.
        """
        if self.llm is None:
            return []

        existing = await self.existing_sources(session_id)
        if existing >= set(self.data_sources.names):
            return []

        try:
            selection = await self._select(session_id, message, existing)
        except Exception as e:
            logger.error("Context selection failed", session_id=session_id, error=str(e))
            await self.store.append_event(
                session_id,
                EventType.ERROR,
                {"message": str(e) or type(e).__name__, "context": {"stage": "context_selection"}},
            )
            return []

        chosen = self.filter_selection(selection, existing)
        logger.info(
            "Context selected",
            session_id=session_id,
            sources=list(chosen),
            reasoning=selection.reasoning,
        )
        if not chosen:
            return []

        injected = []
        results = await self.data_sources.fetch_many(list(chosen), user_id, chosen)
        for result in results:
            if not result.ok:
                await self.store.append_event(
                    session_id,
                    EventType.ERROR,
                    {"message": result.error, "context": {"stage": "data_source", "source": result.source}},
                )
                continue

            await self.store.append_event(
                session_id,
                EventType.KNOWLEDGE,
                {"source": result.source, "formatted_text": result.formatted},
            )
            injected.append(result.source)
            if on_event is not None:
                await on_event("knowledge", {"source": result.source})

        return injected
