"""
Base classes for tools.

A tool declares a pydantic input model (its JSON schema is what the model
sees), an async ``execute`` and a ``format_result`` that turns the typed
output into the short text fed back to the model. Tools hold no session
state; everything they touch comes in through ``ToolContext``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from ..agent.session import SessionStore
    from ..data.sources import DataSourceRegistry
    from ..services.user_data import UserDataStore
    from ..services.workouts import WorkoutService


@dataclass
class ToolContext:
    """Per-call execution context handed to every tool."""

    user_id: str
    session_id: str
    store: "SessionStore"
    data_sources: "DataSourceRegistry"
    user_data: "UserDataStore"
    workouts: "WorkoutService"


# --------------------------------------------------------------------------- #
# Tool outputs, discriminated on ``tool``
# --------------------------------------------------------------------------- #
class NotifyOutput(BaseModel):
    tool: Literal["message_notify_user"] = "message_notify_user"
    message: str
    artifact_id: str | None = None
    artifact: dict[str, Any] | None = None


class AskUserOutput(BaseModel):
    tool: Literal["message_ask_user"] = "message_ask_user"
    question: str
    options: list[str] = Field(default_factory=list)


class IdleOutput(BaseModel):
    tool: Literal["idle"] = "idle"
    reason: str


class WorkoutOutput(BaseModel):
    tool: Literal["generate_workout"] = "generate_workout"
    artifact_id: str
    exercises: list[dict[str, Any]]
    summary: dict[str, Any] = Field(default_factory=dict)

    @property
    def exercise_count(self) -> int:
        return len(self.exercises)


class ExerciseChangeOutput(BaseModel):
    """Result of swapping, adjusting or removing an exercise in the draft workout."""

    tool: Literal["swap_exercise", "adjust_exercise", "remove_exercise"]
    exercise_name: str
    new_exercise_name: str | None = None
    new_exercise_id: str | None = None
    changes: dict[str, list[Any]] = Field(default_factory=dict)
    remaining_count: int | None = None


class LogExerciseOutput(BaseModel):
    tool: Literal["log_exercise"] = "log_exercise"
    id: str
    name: str
    volume: str


class FetchDataOutput(BaseModel):
    tool: Literal["fetch_data"] = "fetch_data"
    sources: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class LocationOutput(BaseModel):
    tool: Literal["set_current_location"] = "set_current_location"
    id: str
    name: str
    description: str | None = None
    equipment_count: int = 0
    equipment_summary: str = "no equipment"
    unchanged: bool = False


class ToolFailure(BaseModel):
    """Any tool call that did not succeed."""

    tool: Literal["failure"] = "failure"
    tool_name: str
    error: str


ToolOutput = Annotated[
    Union[
        NotifyOutput,
        AskUserOutput,
        IdleOutput,
        WorkoutOutput,
        ExerciseChangeOutput,
        LogExerciseOutput,
        FetchDataOutput,
        LocationOutput,
        ToolFailure,
    ],
    Field(discriminator="tool"),
]

tool_output_adapter = TypeAdapter(ToolOutput)


def parse_tool_output(data: dict[str, Any]) -> ToolOutput:
    """Rebuild a typed output from the ``data`` of a stored tool result."""
    return tool_output_adapter.validate_python(data)


class BaseTool(ABC):
    """Base class for all tools."""

    name: ClassVar[str]
    description: ClassVar[str]
    input_model: ClassVar[type[BaseModel]]
    # Progress text streamed to the user around execution
    status_start: ClassVar[str | None] = None
    status_done: ClassVar[str | None] = None

    @abstractmethod
    async def execute(self, args: Any, context: ToolContext) -> ToolOutput:
        """Execute the tool with validated arguments."""
        pass

    @abstractmethod
    def format_result(self, output: Any) -> str:
        """Short text describing the output, fed back to the model."""
        pass

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the tool input."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


def truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."
