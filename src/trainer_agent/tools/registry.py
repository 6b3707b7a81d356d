"""
Tool registry and dispatcher.

The registry is built once at startup, frozen, and passed by reference into
the agent loop. The dispatcher owns the tool_call / tool_result pairing in
the event log: every call it logs gets exactly one result.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from ..errors import RegistryFrozenError, ToolArgumentsError, ToolValidationError, UnknownToolError
from ..llm.base import ToolCall, ToolDefinition
from ..models import EventType
from .base import BaseTool, ToolContext, ToolFailure, ToolOutput

if TYPE_CHECKING:
    from ..agent.session import SessionStore
    from ..data.sources import DataSourceRegistry

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools."""

    def __init__(self):
        self._tools: dict[str, BaseTool] = {}
        self._frozen = False

    def register(self, tool: BaseTool) -> None:
        """Register a tool."""
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{tool.name}': registry is frozen")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def freeze(self) -> "ToolRegistry":
        """Stop accepting registrations."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> BaseTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM, cache marker on the last one."""
        definitions = [tool.to_definition() for tool in self._tools.values()]
        if definitions:
            definitions[-1].cache = True
        return definitions

    async def execute(self, name: str, arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
        """Validate arguments and execute a tool by name.

        Raises:
            UnknownToolError: No tool with this name is registered.
            ToolArgumentsError: The arguments do not match the tool's schema.
        """
        tool = self.get(name)
        if tool is None:
            raise UnknownToolError(name)

        try:
            args = tool.input_model.model_validate(arguments)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolArgumentsError(name, details) from e

        return await tool.execute(args, context)


@dataclass
class ToolOutcome:
    """One executed tool call, as recorded in the event log."""

    call_id: str
    tool_name: str
    arguments: dict[str, Any]
    output: ToolOutput
    result: str
    success: bool
    duration_ms: int = 0
    sequence: int | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool": self.tool_name,
            "args": self.arguments,
            "result": self.output.model_dump(mode="json"),
            "formatted": self.result,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }


class ToolDispatcher:
    """Executes tool calls and records them in the session's event log."""

    def __init__(self, registry: ToolRegistry, store: "SessionStore", timeout_seconds: float = 30.0):
        self.registry = registry
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, call: ToolCall, context: ToolContext) -> ToolOutcome:
        """Log the call, execute it and log exactly one result.

        A cancelled dispatch still records a failed result before the
        cancellation propagates.
        """
        await self.store.append_event(
            context.session_id,
            EventType.TOOL_CALL,
            {"call_id": call.id, "tool_name": call.name, "arguments": call.arguments},
        )

        logger.info("Executing tool", tool_name=call.name, arguments=call.arguments)
        start = time.monotonic()
        output: ToolOutput
        result = ""
        try:
            if call.parse_error:
                raise ToolArgumentsError(call.name, call.parse_error)
            output = await asyncio.wait_for(
                self.registry.execute(call.name, call.arguments, context),
                timeout=self.timeout_seconds,
            )
            result = self.registry.get(call.name).format_result(output)
        except ToolValidationError as e:
            logger.warning("Tool call rejected", tool_name=call.name, error=str(e))
            output = ToolFailure(tool_name=call.name, error=str(e))
        except asyncio.TimeoutError:
            logger.error("Tool timed out", tool_name=call.name, timeout=self.timeout_seconds)
            output = ToolFailure(
                tool_name=call.name,
                error=f"Tool timed out after {self.timeout_seconds:g}s",
            )
        except asyncio.CancelledError:
            logger.warning("Tool cancelled", tool_name=call.name)
            failure = ToolFailure(tool_name=call.name, error="Tool call was cancelled")
            await asyncio.shield(self._record(call, context, failure, result, start))
            raise
        except Exception as e:
            logger.error("Tool execution error", tool_name=call.name, error=str(e))
            output = ToolFailure(tool_name=call.name, error=str(e) or type(e).__name__)

        return await self._record(call, context, output, result, start)

    async def _record(
        self,
        call: ToolCall,
        context: ToolContext,
        output: ToolOutput,
        result: str,
        start: float,
    ) -> ToolOutcome:
        success = not isinstance(output, ToolFailure)
        if not success:
            result = f"Error: {output.error}"

        duration_ms = int((time.monotonic() - start) * 1000)
        event = await self.store.append_event(
            context.session_id,
            EventType.TOOL_RESULT,
            {
                "call_id": call.id,
                "tool_name": call.name,
                "result": result,
                "success": success,
                "data": output.model_dump(mode="json"),
            },
            duration_ms=duration_ms,
        )
        logger.info("Tool executed", tool_name=call.name, success=success, duration_ms=duration_ms)

        return ToolOutcome(
            call_id=call.id,
            tool_name=call.name,
            arguments=call.arguments,
            output=output,
            result=result,
            success=success,
            duration_ms=duration_ms,
            sequence=event.sequence_number,
        )


def build_default_registry(data_sources: "DataSourceRegistry | None" = None) -> ToolRegistry:
    """Create the frozen registry of built-in tools.

    ``fetch_data`` advertises the names in ``data_sources`` as its catalog.
    """
    from .control import AskUserTool, IdleTool, NotifyUserTool
    from .data import FetchDataTool
    from .locations import SetCurrentLocationTool
    from .workouts import (
        AdjustExerciseTool,
        GenerateWorkoutTool,
        LogExerciseTool,
        RemoveExerciseTool,
        SwapExerciseTool,
    )

    registry = ToolRegistry()
    for tool in (
        GenerateWorkoutTool(),
        SwapExerciseTool(),
        AdjustExerciseTool(),
        RemoveExerciseTool(),
        LogExerciseTool(),
        FetchDataTool(data_sources.names if data_sources is not None else None),
        SetCurrentLocationTool(),
        NotifyUserTool(),
        AskUserTool(),
        IdleTool(),
    ):
        registry.register(tool)

    logger.info("Tool registry built", tools=registry.list_tools())
    return registry.freeze()
