"""
Data source registry.

A data source is a named ``fetch`` + ``format`` pair. The registry is the
catalog offered to the context selector and to the ``fetch_data`` tool; the
formatted text of a source becomes the body of a ``knowledge`` event.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import structlog

from ..errors import DataSourceError
from ..services.user_data import UserDataStore
from . import formatters

logger = structlog.get_logger()

Fetcher = Callable[[str, dict[str, Any]], Awaitable[Any]]
Formatter = Callable[[Any], str]


@dataclass
class DataSource:
    """A named piece of user context the agent can pull in."""

    name: str
    description: str
    fetch: Fetcher
    format: Formatter
    default_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class DataSourceResult:
    """Outcome of fetching one source."""

    source: str
    formatted: str = ""
    raw: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DataSourceRegistry:
    """Registry of available data sources."""

    def __init__(self):
        self._sources: dict[str, DataSource] = {}

    def register(self, source: DataSource) -> None:
        self._sources[source.name] = source
        logger.debug("Data source registered", source=source.name)

    def get(self, name: str) -> DataSource | None:
        return self._sources.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._sources.keys())

    def catalog(self) -> list[dict[str, str]]:
        """Names and descriptions, in registration order."""
        return [
            {"name": source.name, "description": source.description}
            for source in self._sources.values()
        ]

    async def fetch(self, name: str, user_id: str, params: dict[str, Any] | None = None) -> DataSourceResult:
        """Fetch and format one source.

        Raises:
            DataSourceError: The source is unknown, or fetching or formatting failed.
        """
        source = self.get(name)
        if source is None:
            raise DataSourceError(name, "unknown data source")

        merged = {**source.default_params, **(params or {})}
        try:
            raw = await source.fetch(user_id, merged)
            formatted = source.format(raw)
        except DataSourceError:
            raise
        except Exception as e:
            raise DataSourceError(name, str(e)) from e

        return DataSourceResult(source=name, formatted=formatted, raw=raw)

    async def fetch_many(
        self,
        names: list[str],
        user_id: str,
        params: dict[str, dict[str, Any]] | None = None,
    ) -> list[DataSourceResult]:
        """Fetch several sources concurrently; failures are reported per source."""
        params = params or {}

        async def _one(name: str) -> DataSourceResult:
            try:
                return await self.fetch(name, user_id, params.get(name))
            except DataSourceError as e:
                logger.warning("Data source fetch failed", source=name, error=str(e))
                return DataSourceResult(source=name, error=str(e))

        return list(await asyncio.gather(*(_one(name) for name in names)))


def build_default_sources(store: UserDataStore) -> DataSourceRegistry:
    """Create the registry of built-in sources backed by a user data store."""
    registry = DataSourceRegistry()

    async def fetch_profile(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_profile(user_id)

    async def fetch_settings(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_settings(user_id)

    async def fetch_history(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_workout_history(user_id, limit=int(params.get("limit") or 10))

    async def fetch_locations(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_locations(user_id)

    async def fetch_goals(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_goals(user_id)

    async def fetch_preferences(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_preferences(user_id)

    async def fetch_distribution(user_id: str, params: dict[str, Any]) -> Any:
        return await store.get_exercise_distribution(user_id)

    registry.register(DataSource(
        name="user_profile",
        description="Basic user profile and body stats",
        fetch=fetch_profile,
        format=formatters.format_body_stats,
    ))
    registry.register(DataSource(
        name="workout_history",
        description="Recent workout history",
        fetch=fetch_history,
        format=formatters.format_workout_history,
        default_params={"limit": 10},
    ))
    registry.register(DataSource(
        name="user_settings",
        description="User app settings and unit preferences",
        fetch=fetch_settings,
        format=formatters.format_user_settings,
    ))
    registry.register(DataSource(
        name="all_locations",
        description="All user locations with equipment details (current marked with ★)",
        fetch=fetch_locations,
        format=formatters.format_all_locations,
    ))
    registry.register(DataSource(
        name="goals",
        description="Category and muscle training goals",
        fetch=fetch_goals,
        format=formatters.format_goals,
    ))
    registry.register(DataSource(
        name="active_preferences",
        description="Temporary and permanent workout preferences",
        fetch=fetch_preferences,
        format=formatters.format_preferences,
    ))
    registry.register(DataSource(
        name="exercise_distribution",
        description="How far each goal category and muscle is from its target share of recent exercises",
        fetch=fetch_distribution,
        format=formatters.format_exercise_distribution,
    ))
    return registry


async def load_profile_snapshot(store: UserDataStore, user_id: str) -> dict[str, Any]:
    """Collect the slow-changing user data serialized into the system prompt."""
    settings, profile, goals, preferences, locations = await asyncio.gather(
        store.get_settings(user_id),
        store.get_profile(user_id),
        store.get_goals(user_id),
        store.get_preferences(user_id),
        store.get_locations(user_id),
    )
    return {
        "settings": settings,
        "profile": profile,
        "goals": goals,
        "preferences": preferences,
        "locations": locations,
    }
