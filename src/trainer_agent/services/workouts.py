"""
Draft workout state for a session.

Tools stay stateless; the "current draft workout" a user is iterating on
lives here and is reached through the tool execution context.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import structlog

logger = structlog.get_logger()


@dataclass
class DraftWorkout:
    """A generated workout that has not been completed yet."""

    artifact_id: str
    exercises: list[dict[str, Any]]
    summary: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def find(self, exercise_ref: str) -> int:
        """Resolve an exercise id or 1-based order number to a list index."""
        for index, exercise in enumerate(self.exercises):
            if exercise.get("id") == exercise_ref:
                return index
        if exercise_ref.isdigit():
            index = int(exercise_ref) - 1
            if 0 <= index < len(self.exercises):
                return index
        raise KeyError(f"No exercise '{exercise_ref}' in the current workout")

    def renumber(self) -> None:
        for order, exercise in enumerate(self.exercises, start=1):
            exercise["order"] = order


class WorkoutService:
    """Holds one draft workout per session."""

    def __init__(self):
        self._drafts: dict[str, DraftWorkout] = {}

    def create(self, session_id: str, exercises: list[dict[str, Any]], summary: dict[str, Any] | None = None) -> DraftWorkout:
        stored = []
        for order, exercise in enumerate(exercises, start=1):
            item = copy.deepcopy(exercise)
            item["id"] = str(uuid4())
            item.setdefault("order", order)
            stored.append(item)

        draft = DraftWorkout(
            artifact_id=f"art_{uuid4().hex[:8]}",
            exercises=stored,
            summary=copy.deepcopy(summary or {}),
        )
        self._drafts[session_id] = draft
        logger.info("Draft workout created", session_id=session_id, exercise_count=len(stored))
        return draft

    def get(self, session_id: str) -> DraftWorkout:
        draft = self._drafts.get(session_id)
        if draft is None:
            raise LookupError("There is no workout in progress for this session")
        return draft

    def swap(self, session_id: str, exercise_ref: str, new_exercise: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        draft = self.get(session_id)
        index = draft.find(exercise_ref)
        old = draft.exercises[index]
        replacement = copy.deepcopy(new_exercise)
        replacement["id"] = str(uuid4())
        replacement["order"] = old.get("order", index + 1)
        draft.exercises[index] = replacement
        return old, replacement

    def adjust(
        self, session_id: str, exercise_ref: str, adjustments: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, list[Any]]]:
        """Update exercise fields, returning the exercise and ``{field: [old, new]}``."""
        draft = self.get(session_id)
        exercise = draft.exercises[draft.find(exercise_ref)]
        changes = {}
        for key, value in adjustments.items():
            # Identity and exercise type are fixed once generated
            if key in ("id", "order", "type"):
                continue
            changes[key] = [exercise.get(key), value]
            exercise[key] = value
        return copy.deepcopy(exercise), changes

    def remove(self, session_id: str, exercise_ref: str) -> dict[str, Any]:
        draft = self.get(session_id)
        index = draft.find(exercise_ref)
        removed = draft.exercises.pop(index)
        draft.renumber()
        return removed
