"""
Tools the agent can call.
"""

from .base import (
    AskUserOutput,
    BaseTool,
    ExerciseChangeOutput,
    FetchDataOutput,
    IdleOutput,
    LocationOutput,
    LogExerciseOutput,
    NotifyOutput,
    ToolContext,
    ToolFailure,
    ToolOutput,
    WorkoutOutput,
    parse_tool_output,
)
from .control import AskUserTool, IdleTool, NotifyUserTool
from .data import FetchDataTool
from .locations import SetCurrentLocationTool
from .registry import ToolDispatcher, ToolOutcome, ToolRegistry, build_default_registry
from .workouts import (
    AdjustExerciseTool,
    GenerateWorkoutTool,
    LogExerciseTool,
    RemoveExerciseTool,
    SwapExerciseTool,
)

__all__ = [
    "BaseTool",
    "ToolContext",
    "ToolOutput",
    "NotifyOutput",
    "AskUserOutput",
    "IdleOutput",
    "WorkoutOutput",
    "ExerciseChangeOutput",
    "LogExerciseOutput",
    "FetchDataOutput",
    "LocationOutput",
    "ToolFailure",
    "parse_tool_output",
    "NotifyUserTool",
    "AskUserTool",
    "IdleTool",
    "GenerateWorkoutTool",
    "SwapExerciseTool",
    "AdjustExerciseTool",
    "RemoveExerciseTool",
    "LogExerciseTool",
    "FetchDataTool",
    "SetCurrentLocationTool",
    "ToolRegistry",
    "ToolDispatcher",
    "ToolOutcome",
    "build_default_registry",
]
