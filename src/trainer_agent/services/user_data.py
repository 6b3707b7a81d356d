"""
User data access used by data sources, the profile snapshot and domain tools.

Profile, goal, preference and history storage is owned by the wider
application. ``UserDataStore`` is the interface the agent runtime consumes;
``InMemoryUserDataStore`` is a reference implementation used by the CLI and
tests.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

import structlog

logger = structlog.get_logger()


class UserDataStore(Protocol):
    """Read/write access to a user's training data."""

    async def get_profile(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_settings(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_goals(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_preferences(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_locations(self, user_id: str) -> list[dict[str, Any]]: ...

    async def get_workout_history(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]: ...

    async def get_exercise_distribution(self, user_id: str) -> dict[str, Any] | None: ...

    async def log_exercise(self, user_id: str, entry: dict[str, Any]) -> dict[str, Any]: ...

    async def set_current_location(self, user_id: str, location_id: str) -> dict[str, Any]: ...


class InMemoryUserDataStore:
    """Dictionary-backed ``UserDataStore``."""

    def __init__(self, users: dict[str, dict[str, Any]] | None = None):
        self._users: dict[str, dict[str, Any]] = copy.deepcopy(users or {})

    def _user(self, user_id: str) -> dict[str, Any]:
        return self._users.setdefault(user_id, {})

    def set_user(self, user_id: str, **data: Any) -> None:
        """Replace sections of a user's data (profile, settings, goals, ...)."""
        self._user(user_id).update(copy.deepcopy(data))

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self._user(user_id).get("profile"))

    async def get_settings(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self._user(user_id).get("settings"))

    async def get_goals(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self._user(user_id).get("goals"))

    async def get_preferences(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self._user(user_id).get("preferences"))

    async def get_locations(self, user_id: str) -> list[dict[str, Any]]:
        locations = self._user(user_id).get("locations") or []
        # Current location first, then by name
        ordered = sorted(locations, key=lambda loc: (not loc.get("current"), loc.get("name", "")))
        return copy.deepcopy(ordered)

    async def get_workout_history(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        history = self._user(user_id).get("workout_history") or []
        ordered = sorted(history, key=lambda w: str(w.get("completed_at", "")), reverse=True)
        return copy.deepcopy(ordered[:limit])

    async def log_exercise(self, user_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        record = {
            "id": str(uuid4()),
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "exercises": [copy.deepcopy(entry)],
        }
        self._user(user_id).setdefault("workout_history", []).append(record)
        logger.info("Exercise logged", user_id=user_id, exercise=entry.get("name"))
        return copy.deepcopy(record)

    async def get_exercise_distribution(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self._user(user_id).get("exercise_distribution"))

    async def set_current_location(self, user_id: str, location_id: str) -> dict[str, Any]:
        """Make one location current and clear the flag on all others.

        Raises:
            LookupError: The user has no location with this id.
        """
        locations = self._user(user_id).get("locations") or []
        target = next((loc for loc in locations if loc.get("id") == location_id), None)
        if target is None:
            raise LookupError(f"Location not found: {location_id}")

        for location in locations:
            location["current"] = location is target
        logger.info("Current location set", user_id=user_id, location_id=location_id)
        return copy.deepcopy(target)
