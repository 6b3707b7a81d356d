"""
Workout tools: build and edit the session's draft workout, log exercises.
"""

from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from ..data.formatters import exercise_volume
from ..models import EventType
from .base import (
    BaseTool,
    ExerciseChangeOutput,
    LogExerciseOutput,
    ToolContext,
    WorkoutOutput,
)

logger = structlog.get_logger()


class ExerciseItem(BaseModel):
    """One exercise as written by the model."""

    name: str = Field(min_length=1)
    type: Literal["reps", "hold", "duration", "intervals"]
    instructions: str | None = None
    categories: list[str] = Field(default_factory=list)
    muscles: list[str] = Field(default_factory=list)
    sets: int | None = Field(default=None, ge=1)
    reps: int | None = Field(default=None, ge=1)
    hold_sec: int | None = Field(default=None, ge=1)
    duration_min: float | None = Field(default=None, gt=0)
    rounds: int | None = Field(default=None, ge=1)
    work_sec: int | None = Field(default=None, ge=1)
    rest_sec: int | None = Field(default=None, ge=0)
    weight_kg: float | None = Field(default=None, ge=0)


class WorkoutSummary(BaseModel):
    total_duration_estimate: int | None = Field(default=None, description="Minutes")
    focus_areas: list[str] = Field(default_factory=list)
    difficulty: Literal["beginner", "intermediate", "advanced"] | None = None


class GenerateWorkoutInput(BaseModel):
    exercises: list[ExerciseItem] = Field(min_length=1)
    summary: WorkoutSummary | None = None
    title: str | None = Field(default=None, description="Short workout title shown to the user")


class SwapExerciseInput(BaseModel):
    exercise_id: str = Field(description="Id (or 1-based position) of the exercise to replace")
    new_exercise: ExerciseItem
    reason: str | None = None


class AdjustExerciseInput(BaseModel):
    exercise_id: str = Field(description="Id (or 1-based position) of the exercise to modify")
    adjustments: dict[str, Any] = Field(min_length=1, description="Fields to update, e.g. {\"sets\": 4}")


class RemoveExerciseInput(BaseModel):
    exercise_id: str = Field(description="Id (or 1-based position) of the exercise to remove")
    reason: str | None = None


class LogExerciseInput(BaseModel):
    name: str = Field(min_length=1, description="Exercise name, e.g. 'pushup'")
    sets: int | None = Field(default=None, ge=1)
    reps: int | None = Field(default=None, ge=1)
    hold_sec: int | None = Field(default=None, ge=1)
    duration_min: float | None = Field(default=None, gt=0)
    weight_kg: float | None = Field(default=None, ge=0)
    notes: str | None = None


class GenerateWorkoutTool(BaseTool):
    name = "generate_workout"
    status_start = "Creating your workout..."
    status_done = "Workout ready"
    description = (
        "Generate a workout based on the user's goals, preferences, location and history. "
        "You write the exercises directly. The workout is shown to the user as an artifact; "
        "follow up with message_notify_user referencing its artifact_id."
    )
    input_model = GenerateWorkoutInput

    async def execute(self, args: GenerateWorkoutInput, context: ToolContext) -> WorkoutOutput:
        exercises = [exercise.model_dump(exclude_none=True) for exercise in args.exercises]
        summary = args.summary.model_dump(exclude_none=True) if args.summary else {}
        draft = context.workouts.create(context.session_id, exercises, summary)

        await context.store.append_event(
            context.session_id,
            EventType.ARTIFACT,
            {
                "artifact_id": draft.artifact_id,
                "type": "workout",
                "title": args.title or "Workout",
                "summary": {
                    **summary,
                    "exercise_count": len(draft.exercises),
                    "exercises": [
                        {"id": e["id"], "name": e["name"], "volume": exercise_volume(e)}
                        for e in draft.exercises
                    ],
                },
                "payload": {"exercises": draft.exercises},
            },
        )
        logger.info(
            "Workout artifact created",
            session_id=context.session_id,
            artifact_id=draft.artifact_id,
        )
        return WorkoutOutput(artifact_id=draft.artifact_id, exercises=draft.exercises, summary=summary)

    def format_result(self, output: WorkoutOutput) -> str:
        return f"✓ {output.exercise_count} exercises generated (artifact {output.artifact_id})"


class SwapExerciseTool(BaseTool):
    name = "swap_exercise"
    status_start = "Finding alternative..."
    status_done = "Exercise swapped"
    description = "Replace an exercise in the current workout with a new one."
    input_model = SwapExerciseInput

    async def execute(self, args: SwapExerciseInput, context: ToolContext) -> ExerciseChangeOutput:
        old, new = context.workouts.swap(
            context.session_id,
            args.exercise_id,
            args.new_exercise.model_dump(exclude_none=True),
        )
        return ExerciseChangeOutput(
            tool="swap_exercise",
            exercise_name=old["name"],
            new_exercise_name=new["name"],
            new_exercise_id=new["id"],
        )

    def format_result(self, output: ExerciseChangeOutput) -> str:
        return f'Swapped "{output.exercise_name}" with "{output.new_exercise_name}" [id:{output.new_exercise_id}]'


class AdjustExerciseTool(BaseTool):
    name = "adjust_exercise"
    status_start = "Adjusting exercise..."
    status_done = "Exercise updated"
    description = "Modify parameters of an existing exercise (sets, reps, duration, etc.)."
    input_model = AdjustExerciseInput

    async def execute(self, args: AdjustExerciseInput, context: ToolContext) -> ExerciseChangeOutput:
        exercise, changes = context.workouts.adjust(context.session_id, args.exercise_id, args.adjustments)
        return ExerciseChangeOutput(
            tool="adjust_exercise",
            exercise_name=exercise["name"],
            changes=changes,
        )

    def format_result(self, output: ExerciseChangeOutput) -> str:
        if not output.changes:
            return f'No changes applied to "{output.exercise_name}"'
        changes = ", ".join(f"{key}: {old} → {new}" for key, (old, new) in output.changes.items())
        return f'Adjusted "{output.exercise_name}": {changes}'


class RemoveExerciseTool(BaseTool):
    name = "remove_exercise"
    status_start = "Removing exercise..."
    status_done = "Exercise removed"
    description = "Remove an exercise from the current workout."
    input_model = RemoveExerciseInput

    async def execute(self, args: RemoveExerciseInput, context: ToolContext) -> ExerciseChangeOutput:
        removed = context.workouts.remove(context.session_id, args.exercise_id)
        remaining = len(context.workouts.get(context.session_id).exercises)
        return ExerciseChangeOutput(
            tool="remove_exercise",
            exercise_name=removed["name"],
            remaining_count=remaining,
        )

    def format_result(self, output: ExerciseChangeOutput) -> str:
        return f'Removed "{output.exercise_name}". {output.remaining_count} exercises remaining.'


class LogExerciseTool(BaseTool):
    name = "log_exercise"
    status_start = "Saving your workout..."
    status_done = "Workout logged"
    description = "Log an exercise the user has completed to their workout history."
    input_model = LogExerciseInput

    async def execute(self, args: LogExerciseInput, context: ToolContext) -> LogExerciseOutput:
        entry = args.model_dump(exclude_none=True)
        record = await context.user_data.log_exercise(context.user_id, entry)
        return LogExerciseOutput(id=record["id"], name=args.name, volume=exercise_volume(entry))

    def format_result(self, output: LogExerciseOutput) -> str:
        return f"Logged {output.name} ({output.volume}) [id:{output.id}]"
