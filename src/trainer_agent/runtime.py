"""
Runtime wiring shared by the HTTP API and the CLI.
"""

import json
from pathlib import Path

import structlog

from .agent import AgentLoop, SessionStore
from .config import Settings, get_settings
from .data import build_default_sources
from .llm import BaseLLM
from .models import init_database
from .services import InMemoryUserDataStore, UserDataStore
from .tools import build_default_registry

logger = structlog.get_logger()


def load_user_data(path: str | None) -> InMemoryUserDataStore:
    """Create the reference user data store, optionally seeded from JSON."""
    if not path:
        return InMemoryUserDataStore()

    users = json.loads(Path(path).read_text(encoding="utf-8"))
    logger.info("User data loaded", path=path, users=len(users))
    return InMemoryUserDataStore(users)


async def build_agent_loop(
    settings: Settings | None = None,
    user_data: UserDataStore | None = None,
    llm: BaseLLM | None = None,
    selector_llm: BaseLLM | None = None,
) -> AgentLoop:
    """Initialize the database and assemble an agent loop."""
    settings = settings or get_settings()

    session_maker = await init_database(settings.database_url)
    logger.info("Database initialized", url=settings.database_url)

    store = SessionStore(session_maker)
    user_data = user_data or load_user_data(settings.user_data_path)
    data_sources = build_default_sources(user_data)

    return AgentLoop(
        store=store,
        registry=build_default_registry(data_sources),
        data_sources=data_sources,
        user_data=user_data,
        llm=llm,
        selector_llm=selector_llm,
        settings=settings,
    )
