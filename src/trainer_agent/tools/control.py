"""
Communication and control tools.

``message_ask_user`` and ``idle`` end the agent loop; ``message_notify_user``
does not.
"""

from pydantic import BaseModel, Field

from ..errors import ToolValidationError
from .base import AskUserOutput, BaseTool, IdleOutput, NotifyOutput, ToolContext, truncate


class NotifyUserInput(BaseModel):
    message: str = Field(min_length=1, description="The message to display to the user")
    artifact_id: str | None = Field(
        default=None,
        description="Id of an artifact (e.g. a generated workout) to attach to the message",
    )


class AskUserInput(BaseModel):
    question: str = Field(min_length=1, description="The question to ask the user")
    options: list[str] = Field(default_factory=list, description="Optional suggested responses")


class IdleInput(BaseModel):
    reason: str = Field(description="Brief reason for going idle")


class NotifyUserTool(BaseTool):
    name = "message_notify_user"
    description = (
        "Send a message to the user without expecting a response. "
        "Use for confirmations, status updates, and information."
    )
    input_model = NotifyUserInput

    async def execute(self, args: NotifyUserInput, context: ToolContext) -> NotifyOutput:
        artifact = None
        if args.artifact_id:
            artifact = await context.store.get_artifact(context.session_id, args.artifact_id)
            if artifact is None:
                raise ToolValidationError(self.name, f"Unknown artifact: {args.artifact_id}")
        return NotifyOutput(message=args.message, artifact_id=args.artifact_id, artifact=artifact)

    def format_result(self, output: NotifyOutput) -> str:
        return f'Notified user: "{truncate(output.message)}"'


class AskUserTool(BaseTool):
    name = "message_ask_user"
    description = (
        "Ask the user a question and wait for their response. "
        "Use when you need clarification or input. Ends your turn."
    )
    input_model = AskUserInput

    async def execute(self, args: AskUserInput, context: ToolContext) -> AskUserOutput:
        return AskUserOutput(question=args.question, options=args.options)

    def format_result(self, output: AskUserOutput) -> str:
        return f'Asked user: "{truncate(output.question)}"'


class IdleTool(BaseTool):
    name = "idle"
    status_start = "Wrapping up..."
    status_done = "All done"
    description = (
        "Signal that you have completed the current task and are waiting for "
        "user input. Always call this when done."
    )
    input_model = IdleInput

    async def execute(self, args: IdleInput, context: ToolContext) -> IdleOutput:
        return IdleOutput(reason=args.reason)

    def format_result(self, output: IdleOutput) -> str:
        return f"Agent idle: {output.reason}"
