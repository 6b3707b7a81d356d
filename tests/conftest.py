"""
Shared fixtures: a temporary SQLite event store, reference user data and a
scripted LLM.
"""

import copy
from typing import Any, Callable
from uuid import uuid4

import pytest

from trainer_agent.agent import AgentLoop, SessionStore
from trainer_agent.config import Settings
from trainer_agent.data import build_default_sources
from trainer_agent.llm.base import BaseLLM, LLMResponse, TokenUsage, ToolCall
from trainer_agent.models import init_database
from trainer_agent.services import InMemoryUserDataStore, WorkoutService
from trainer_agent.tools import ToolContext, build_default_registry

USER_ID = "user-1"


def tool_response(name: str, arguments: dict[str, Any] | None = None, call_id: str | None = None) -> LLMResponse:
    """A model response carrying a single tool call."""
    return LLMResponse(
        content="",
        tool_calls=[ToolCall(
            id=call_id or f"call_{uuid4().hex[:8]}",
            name=name,
            arguments=arguments or {},
        )],
        usage=TokenUsage(input_tokens=120, output_tokens=15, cache_read_tokens=300),
        model="scripted-model",
        stop_reason="tool_use",
    )


class ScriptedLLM(BaseLLM):
    """Returns queued responses in order and records every request.

    Queued exceptions are raised instead of returned. When the queue runs
    dry, ``fallback`` (if given) produces the next response.
    """

    def __init__(self, responses: list[Any] | None = None, fallback: Callable[[], LLMResponse] | None = None):
        super().__init__(api_key="test-key", model="scripted-model")
        self.responses = list(responses or [])
        self.fallback = fallback
        self.requests: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(self, messages, tools=None, system=None, tool_choice="auto") -> LLMResponse:
        self.requests.append({
            "messages": copy.deepcopy(messages),
            "tools": copy.deepcopy(tools),
            "system": copy.deepcopy(system),
            "tool_choice": tool_choice,
        })
        if self.responses:
            item = self.responses.pop(0)
        elif self.fallback is not None:
            item = self.fallback()
        else:
            raise RuntimeError("No scripted response left")

        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
async def session_maker(tmp_path):
    maker = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    yield maker
    await maker.kw["bind"].dispose()


@pytest.fixture
def store(session_maker) -> SessionStore:
    return SessionStore(session_maker)


@pytest.fixture
def user_data() -> InMemoryUserDataStore:
    return InMemoryUserDataStore({
        USER_ID: {
            "profile": {"sex": "female", "dob": "1990-06-15", "height_cm": 168, "weight_kg": 62.5},
            "settings": {"weight_unit": "kg", "distance_unit": "km", "preferred_workout_duration": 45},
            "goals": {
                "category_goals": [{"category": "Strength", "weight": 0.6}, {"category": "Mobility", "weight": 0.4}],
                "muscle_goals": [{"muscle": "Glutes", "weight": 0.3}],
            },
            "preferences": {"permanent": [{"description": "No burpees"}]},
            "locations": [
                {"id": "loc-1", "name": "Home", "current": True, "equipment": ["yoga mat", "pull-up bar"]},
                {"id": "loc-2", "name": "Gym", "equipment": []},
            ],
            "workout_history": [
                {
                    "id": "w-1",
                    "completed_at": "2026-10-01T08:00:00+00:00",
                    "exercises": [{"name": "Squat", "sets": 3, "reps": 8}],
                },
            ],
            "exercise_distribution": {
                "tracking_since": "2026-09-01T00:00:00+00:00",
                "total_exercises": 40,
                "categories": {
                    "Strength": {"target": 0.6, "actual": 0.4, "debt": 0.2},
                    "Mobility": {"target": 0.4, "actual": 0.6, "debt": -0.2},
                },
                "muscles": {"Glutes": {"target": 0.3, "actual": 0.28, "debt": 0.02}},
            },
        },
    })


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        selector_enabled=False,
        max_iterations=10,
        model_timeout_seconds=5.0,
        tool_timeout_seconds=5.0,
    )


@pytest.fixture
def registry(data_sources):
    return build_default_registry(data_sources)


@pytest.fixture
def data_sources(user_data):
    return build_default_sources(user_data)


@pytest.fixture
def make_loop(store, registry, data_sources, user_data, settings):
    """Factory for agent loops sharing the test store."""

    def _make(llm: BaseLLM, selector_llm: BaseLLM | None = None, **overrides: Any) -> AgentLoop:
        return AgentLoop(
            store=store,
            registry=registry,
            data_sources=data_sources,
            user_data=user_data,
            llm=llm,
            selector_llm=selector_llm,
            settings=settings.model_copy(update=overrides),
        )

    return _make


@pytest.fixture
async def tool_context(store, data_sources, user_data) -> ToolContext:
    session = await store.create_session(USER_ID)
    return ToolContext(
        user_id=USER_ID,
        session_id=session.id,
        store=store,
        data_sources=data_sources,
        user_data=user_data,
        workouts=WorkoutService(),
    )
