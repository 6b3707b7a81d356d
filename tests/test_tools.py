"""
Tests for tools module.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from trainer_agent.errors import RegistryFrozenError, ToolArgumentsError, ToolValidationError, UnknownToolError
from trainer_agent.llm.base import ToolCall
from trainer_agent.models import EventType
from trainer_agent.tools import (
    AskUserOutput,
    BaseTool,
    FetchDataOutput,
    FetchDataTool,
    IdleOutput,
    IdleTool,
    LocationOutput,
    LogExerciseOutput,
    NotifyOutput,
    ToolDispatcher,
    ToolFailure,
    ToolRegistry,
    WorkoutOutput,
    parse_tool_output,
)

PUSHUP = {"name": "Pushup", "type": "reps", "sets": 3, "reps": 10}
PLANK = {"name": "Plank", "type": "hold", "sets": 3, "hold_sec": 45}
ROW = {"name": "Dumbbell Row", "type": "reps", "sets": 4, "reps": 8, "weight_kg": 12.5}


class SlowInput(BaseModel):
    seconds: float = 1.0


class SlowTool(BaseTool):
    name = "slow"
    description = "Sleeps for a while."
    input_model = SlowInput

    async def execute(self, args, context):
        await asyncio.sleep(args.seconds)
        return IdleOutput(reason="slept")

    def format_result(self, output):
        return "slept"


class BlockingTool(SlowTool):
    name = "blocking"
    description = "Signals when it starts, then sleeps."

    def __init__(self):
        self.started = asyncio.Event()

    async def execute(self, args, context):
        self.started.set()
        return await super().execute(args, context)


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_default_tools(self, registry):
        """Test the built-in tool set."""
        assert registry.frozen
        assert registry.list_tools() == [
            "generate_workout",
            "swap_exercise",
            "adjust_exercise",
            "remove_exercise",
            "log_exercise",
            "fetch_data",
            "set_current_location",
            "message_notify_user",
            "message_ask_user",
            "idle",
        ]

    def test_definitions(self, registry):
        """Test definitions carry JSON schemas and one cache marker on the last tool."""
        definitions = registry.get_definitions()

        assert definitions[-1].name == "idle"
        assert [d.cache for d in definitions].count(True) == 1
        assert definitions[-1].cache is True

        log = next(d for d in definitions if d.name == "log_exercise")
        assert log.parameters["type"] == "object"
        assert "name" in log.parameters["required"]
        assert "title" not in log.parameters

    def test_definitions_are_stable(self, registry):
        """Test repeated calls produce identical definitions."""
        assert registry.get_definitions() == registry.get_definitions()

    def test_frozen_registry_rejects_registration(self, registry):
        """Test registering after freeze fails."""
        with pytest.raises(RegistryFrozenError):
            registry.register(SlowTool())

    def test_duplicate_registration(self):
        """Test registering the same name twice fails."""
        registry = ToolRegistry()
        registry.register(IdleTool())

        with pytest.raises(ValueError):
            registry.register(IdleTool())

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self, registry, tool_context):
        """Test executing an unregistered tool."""
        with pytest.raises(UnknownToolError):
            await registry.execute("teleport", {}, tool_context)

    @pytest.mark.asyncio
    async def test_execute_invalid_arguments(self, registry, tool_context):
        """Test schema validation errors name the offending field."""
        with pytest.raises(ToolArgumentsError) as exc_info:
            await registry.execute("log_exercise", {"sets": 3}, tool_context)

        assert "name" in str(exc_info.value)


class TestControlTools:
    """Tests for communication and control tools."""

    @pytest.mark.asyncio
    async def test_notify(self, registry, tool_context):
        """Test notify output and formatting."""
        output = await registry.execute("message_notify_user", {"message": "Here you go"}, tool_context)

        assert output == NotifyOutput(message="Here you go")
        assert registry.get("message_notify_user").format_result(output) == 'Notified user: "Here you go"'

    @pytest.mark.asyncio
    async def test_notify_attaches_artifact(self, registry, tool_context):
        """Test a referenced artifact is looked up and attached to the message."""
        workout = await registry.execute(
            "generate_workout", {"exercises": [PUSHUP], "title": "Quick push"}, tool_context
        )

        output = await registry.execute(
            "message_notify_user",
            {"message": "Your workout is ready", "artifact_id": workout.artifact_id},
            tool_context,
        )

        assert output.artifact_id == workout.artifact_id
        assert output.artifact["title"] == "Quick push"
        assert output.artifact["payload"]["exercises"][0]["name"] == "Pushup"

    @pytest.mark.asyncio
    async def test_notify_unknown_artifact(self, registry, tool_context):
        """Test referencing an artifact that was never created is rejected."""
        with pytest.raises(ToolValidationError, match="Unknown artifact: art_missing"):
            await registry.execute(
                "message_notify_user", {"message": "Here you go", "artifact_id": "art_missing"}, tool_context
            )

    @pytest.mark.asyncio
    async def test_ask_user_truncates_long_questions(self, registry, tool_context):
        """Test long questions are truncated in the formatted result."""
        question = "Which of your locations would you like to train at today, home or gym?"
        output = await registry.execute(
            "message_ask_user", {"question": question, "options": ["Home", "Gym"]}, tool_context
        )

        assert isinstance(output, AskUserOutput)
        assert output.options == ["Home", "Gym"]
        assert registry.get("message_ask_user").format_result(output) == f'Asked user: "{question[:50]}..."'

    @pytest.mark.asyncio
    async def test_idle(self, registry, tool_context):
        """Test idle formatting."""
        output = await registry.execute("idle", {"reason": "done"}, tool_context)

        assert registry.get("idle").format_result(output) == "Agent idle: done"


class TestWorkoutTools:
    """Tests for workout tools."""

    @pytest.mark.asyncio
    async def test_generate_workout_creates_artifact(self, registry, tool_context, store):
        """Test a generated workout is stored as an artifact event."""
        output = await registry.execute(
            "generate_workout",
            {"exercises": [PUSHUP, PLANK], "summary": {"focus_areas": ["Chest"]}, "title": "Push day"},
            tool_context,
        )

        assert isinstance(output, WorkoutOutput)
        assert output.artifact_id.startswith("art_")
        assert [e["order"] for e in output.exercises] == [1, 2]
        assert all(e["id"] for e in output.exercises)
        assert registry.get("generate_workout").format_result(output) == (
            f"✓ 2 exercises generated (artifact {output.artifact_id})"
        )

        events = await store.get_events(tool_context.session_id, event_types=[EventType.ARTIFACT.value])
        assert len(events) == 1
        data = events[0].data
        assert data["artifact_id"] == output.artifact_id
        assert data["title"] == "Push day"
        assert data["summary"]["exercise_count"] == 2
        assert data["summary"]["exercises"][1]["volume"] == "3x45s"

    @pytest.mark.asyncio
    async def test_generate_workout_requires_exercises(self, registry, tool_context):
        """Test an empty workout is rejected."""
        with pytest.raises(ToolArgumentsError):
            await registry.execute("generate_workout", {"exercises": []}, tool_context)

    @pytest.mark.asyncio
    async def test_edit_draft_workout(self, registry, tool_context):
        """Test swap, adjust and remove on the draft workout."""
        workout = await registry.execute("generate_workout", {"exercises": [PUSHUP, PLANK]}, tool_context)
        pushup_id = workout.exercises[0]["id"]

        swapped = await registry.execute(
            "swap_exercise", {"exercise_id": pushup_id, "new_exercise": ROW}, tool_context
        )
        assert swapped.exercise_name == "Pushup"
        assert registry.get("swap_exercise").format_result(swapped) == (
            f'Swapped "Pushup" with "Dumbbell Row" [id:{swapped.new_exercise_id}]'
        )

        adjusted = await registry.execute(
            "adjust_exercise", {"exercise_id": "1", "adjustments": {"sets": 5, "type": "hold"}}, tool_context
        )
        assert adjusted.changes == {"sets": [4, 5]}
        assert registry.get("adjust_exercise").format_result(adjusted) == 'Adjusted "Dumbbell Row": sets: 4 → 5'

        removed = await registry.execute("remove_exercise", {"exercise_id": "2"}, tool_context)
        assert registry.get("remove_exercise").format_result(removed) == 'Removed "Plank". 1 exercises remaining.'

        draft = tool_context.workouts.get(tool_context.session_id)
        assert [e["name"] for e in draft.exercises] == ["Dumbbell Row"]
        assert draft.exercises[0]["order"] == 1

    @pytest.mark.asyncio
    async def test_edit_without_draft_fails(self, registry, tool_context):
        """Test editing before any workout exists raises."""
        with pytest.raises(LookupError):
            await registry.execute("remove_exercise", {"exercise_id": "1"}, tool_context)

    @pytest.mark.asyncio
    async def test_log_exercise(self, registry, tool_context, user_data):
        """Test logging writes to the user's history."""
        output = await registry.execute(
            "log_exercise", {"name": "Pushup", "sets": 3, "reps": 10}, tool_context
        )

        assert isinstance(output, LogExerciseOutput)
        assert output.volume == "3x10"
        assert registry.get("log_exercise").format_result(output) == f"Logged Pushup (3x10) [id:{output.id}]"

        history = await user_data.get_workout_history(tool_context.user_id)
        assert any(w["id"] == output.id for w in history)


class TestLocationTool:
    """Tests for set_current_location."""

    @pytest.mark.asyncio
    async def test_switch_by_id(self, registry, tool_context, user_data):
        """Test switching moves the current flag to exactly one location."""
        output = await registry.execute("set_current_location", {"location_id": "loc-2"}, tool_context)

        assert isinstance(output, LocationOutput)
        assert output.name == "Gym"
        assert output.unchanged is False
        assert registry.get("set_current_location").format_result(output) == (
            "Switched to Gym (0 equipment items: no equipment)"
        )

        locations = await user_data.get_locations(tool_context.user_id)
        assert [loc["id"] for loc in locations if loc.get("current")] == ["loc-2"]

    @pytest.mark.asyncio
    async def test_switch_by_name_ignores_case(self, registry, tool_context, user_data):
        """Test names are matched case-insensitively."""
        await registry.execute("set_current_location", {"location_id": "loc-2"}, tool_context)

        output = await registry.execute("set_current_location", {"location_name": "home"}, tool_context)

        assert output.id == "loc-1"
        assert output.equipment_count == 2
        assert output.equipment_summary == "yoga mat, pull-up bar"

    @pytest.mark.asyncio
    async def test_already_current(self, registry, tool_context, user_data):
        """Test switching to the current location changes nothing."""
        user_data.set_current_location = AsyncMock()

        output = await registry.execute("set_current_location", {"location_id": "loc-1"}, tool_context)

        assert output.unchanged is True
        assert registry.get("set_current_location").format_result(output) == "Already at Home"
        user_data.set_current_location.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_location(self, registry, tool_context):
        """Test unknown ids and names are reported."""
        with pytest.raises(LookupError, match="Location not found: loc-9"):
            await registry.execute("set_current_location", {"location_id": "loc-9"}, tool_context)
        with pytest.raises(LookupError, match='No location named "Beach"'):
            await registry.execute("set_current_location", {"location_name": "Beach"}, tool_context)

    @pytest.mark.asyncio
    async def test_ambiguous_name(self, registry, tool_context, user_data):
        """Test a name shared by two locations asks for an id."""
        user_data.set_user(tool_context.user_id, locations=[
            {"id": "loc-1", "name": "Gym", "current": True},
            {"id": "loc-2", "name": "gym"},
        ])

        with pytest.raises(LookupError, match="Please use location_id"):
            await registry.execute("set_current_location", {"location_name": "GYM"}, tool_context)

    @pytest.mark.asyncio
    async def test_requires_id_or_name(self, registry, tool_context):
        """Test one of location_id or location_name must be given."""
        with pytest.raises(ToolArgumentsError, match="location_id or location_name"):
            await registry.execute("set_current_location", {}, tool_context)


class TestFetchDataTool:
    """Tests for fetch_data."""

    def test_definition_lists_catalog(self, registry, data_sources):
        """Test the source names come from the data source registry."""
        definition = next(d for d in registry.get_definitions() if d.name == "fetch_data")

        items = definition.parameters["properties"]["sources"]["items"]
        assert items == {"type": "string", "enum": data_sources.names}
        assert "exercise_distribution" in items["enum"]
        assert definition.description.endswith(f"Available sources: {', '.join(data_sources.names)}.")

    def test_definition_without_catalog(self):
        """Test a tool built without a catalog accepts any source name."""
        definition = FetchDataTool().to_definition()

        assert definition.parameters["properties"]["sources"]["items"] == {"type": "string"}
        assert "Available sources" not in definition.description

    @pytest.mark.asyncio
    async def test_fetch_injects_knowledge(self, registry, tool_context, store):
        """Test fetched sources become knowledge events and failures are reported."""
        output = await registry.execute(
            "fetch_data",
            {"sources": ["workout_history", "weather", "workout_history"], "params": {"workout_history": {"limit": 1}}},
            tool_context,
        )

        assert isinstance(output, FetchDataOutput)
        assert output.sources == ["workout_history"]
        assert "weather" in output.failed

        formatted = registry.get("fetch_data").format_result(output)
        assert formatted.startswith("Fetched 1 data sources: workout_history; failed: weather")

        events = await store.get_events(tool_context.session_id, event_types=[EventType.KNOWLEDGE.value])
        assert [e.data["source"] for e in events] == ["workout_history"]
        assert "Squat(3x8)" in events[0].data["formatted_text"]

    @pytest.mark.asyncio
    async def test_fetch_exercise_distribution(self, registry, tool_context, store):
        """Test goal distribution tracking can be pulled into context."""
        output = await registry.execute("fetch_data", {"sources": ["exercise_distribution"]}, tool_context)

        assert output.sources == ["exercise_distribution"]
        events = await store.get_events(tool_context.session_id, event_types=[EventType.KNOWLEDGE.value])
        assert "Strength: target 60%, actual 40%, needs +20%" in events[0].data["formatted_text"]


class TestToolDispatcher:
    """Tests for ToolDispatcher."""

    @pytest.mark.asyncio
    async def test_dispatch_success(self, registry, store, tool_context):
        """Test a successful call logs a call and a result."""
        dispatcher = ToolDispatcher(registry, store)

        outcome = await dispatcher.dispatch(
            ToolCall(id="c1", name="idle", arguments={"reason": "done"}), tool_context
        )

        assert outcome.success
        assert outcome.result == "Agent idle: done"
        assert outcome.sequence == 1

        events = await store.get_events(tool_context.session_id)
        assert [e.event_type for e in events] == ["tool_call", "tool_result"]
        assert events[1].data["call_id"] == "c1"
        assert events[1].data["success"] is True
        assert events[1].data["data"] == {"tool": "idle", "reason": "done"}
        assert events[1].duration_ms is not None

        assert outcome.to_dict()["result"] == {"tool": "idle", "reason": "done"}

    @pytest.mark.asyncio
    async def test_dispatch_tool_exception(self, registry, store, tool_context):
        """Test a raising tool still gets exactly one failed result."""
        tool_context.user_data.log_exercise = AsyncMock(side_effect=RuntimeError("database unavailable"))
        dispatcher = ToolDispatcher(registry, store)

        outcome = await dispatcher.dispatch(
            ToolCall(id="c1", name="log_exercise", arguments={"name": "Pushup"}), tool_context
        )

        assert not outcome.success
        assert outcome.result == "Error: database unavailable"
        assert outcome.output == ToolFailure(tool_name="log_exercise", error="database unavailable")

        results = await store.get_events(tool_context.session_id, event_types=[EventType.TOOL_RESULT.value])
        assert len(results) == 1
        assert results[0].data["success"] is False

    @pytest.mark.asyncio
    async def test_dispatch_unknown_tool(self, registry, store, tool_context):
        """Test unknown tools produce a failed result rather than an exception."""
        outcome = await ToolDispatcher(registry, store).dispatch(
            ToolCall(id="c1", name="teleport", arguments={}), tool_context
        )

        assert not outcome.success
        assert outcome.result == "Error: Unknown tool: teleport"

    @pytest.mark.asyncio
    async def test_dispatch_invalid_arguments(self, registry, store, tool_context):
        """Test invalid arguments produce a failed result."""
        outcome = await ToolDispatcher(registry, store).dispatch(
            ToolCall(id="c1", name="idle", arguments={}), tool_context
        )

        assert not outcome.success
        assert outcome.result.startswith("Error: Invalid arguments for idle")

    @pytest.mark.asyncio
    async def test_dispatch_timeout(self, store, tool_context):
        """Test slow tools are cut off and reported."""
        registry = ToolRegistry()
        registry.register(SlowTool())
        dispatcher = ToolDispatcher(registry.freeze(), store, timeout_seconds=0.05)

        outcome = await dispatcher.dispatch(
            ToolCall(id="c1", name="slow", arguments={"seconds": 5}), tool_context
        )

        assert not outcome.success
        assert outcome.result == "Error: Tool timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_dispatch_malformed_arguments(self, registry, store, tool_context):
        """Test arguments the provider could not decode are rejected as invalid arguments."""
        call = ToolCall(
            id="c1",
            name="log_exercise",
            arguments={},
            parse_error="arguments are not valid JSON (Expecting ',' delimiter at position 30)",
        )

        outcome = await ToolDispatcher(registry, store).dispatch(call, tool_context)

        assert not outcome.success
        assert outcome.result.startswith("Error: Invalid arguments for log_exercise: arguments are not valid JSON")
        events = await store.get_events(tool_context.session_id)
        assert [e.event_type for e in events] == ["tool_call", "tool_result"]

    @pytest.mark.asyncio
    async def test_dispatch_cancelled_records_result(self, store, tool_context):
        """Test a cancelled dispatch still pairs its call with a failed result."""
        tool = BlockingTool()
        registry = ToolRegistry()
        registry.register(tool)
        dispatcher = ToolDispatcher(registry.freeze(), store)

        task = asyncio.create_task(dispatcher.dispatch(
            ToolCall(id="c1", name="blocking", arguments={"seconds": 5}), tool_context
        ))
        await asyncio.wait_for(tool.started.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        results = await store.get_events(tool_context.session_id, event_types=[EventType.TOOL_RESULT.value])
        assert len(results) == 1
        assert results[0].data["call_id"] == "c1"
        assert results[0].data["success"] is False
        assert results[0].data["result"] == "Error: Tool call was cancelled"



class TestToolOutputs:
    """Tests for the tool output union."""

    def test_parse_tool_output(self):
        """Test stored result data is rebuilt into the right output type."""
        assert isinstance(parse_tool_output({"tool": "idle", "reason": "x"}), IdleOutput)
        failure = parse_tool_output({"tool": "failure", "tool_name": "log_exercise", "error": "boom"})
        assert isinstance(failure, ToolFailure)

        change = parse_tool_output({"tool": "remove_exercise", "exercise_name": "Plank", "remaining_count": 2})
        assert change.remaining_count == 2
