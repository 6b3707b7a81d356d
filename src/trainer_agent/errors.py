"""
Error taxonomy for the agent runtime.

Recoverable errors (tool validation, data sources) are turned into events the
model can see. Unrecoverable ones (transport, loop bound) end the current turn
and are handed back to the caller inside the turn result.
"""


class AgentError(Exception):
    """Base class for all agent runtime errors."""


class ToolValidationError(AgentError):
    """A tool call could not be executed as requested."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class UnknownToolError(ToolValidationError):
    """The model asked for a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool: {tool_name}")


class ToolArgumentsError(ToolValidationError):
    """Tool arguments failed schema validation."""

    def __init__(self, tool_name: str, details: str):
        super().__init__(tool_name, f"Invalid arguments for {tool_name}: {details}")
        self.details = details


class TransportError(AgentError):
    """The model provider call failed or timed out."""


class DataSourceError(AgentError):
    """A knowledge data source could not be fetched or formatted."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class LoopBoundError(AgentError):
    """The agent loop hit its iteration cap without reaching a terminal tool."""

    def __init__(self, max_iterations: int):
        super().__init__(f"Max iterations ({max_iterations}) reached")
        self.max_iterations = max_iterations


class ContextBuildError(AgentError):
    """The event log cannot be folded into a valid provider message list."""


class SessionNotFoundError(AgentError):
    """No session exists with the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionBusyError(AgentError):
    """A turn is already running for this session."""

    def __init__(self, session_id: str):
        super().__init__(f"A turn is already in progress for session {session_id}")
        self.session_id = session_id


class RegistryFrozenError(AgentError):
    """The tool registry no longer accepts registrations."""
