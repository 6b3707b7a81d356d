"""
Context building.

Folds a session's event log into provider messages. The output for a given
log and cache boundary is fully deterministic, so everything up to the
boundary is byte-identical between calls and can be served from the
provider's prompt cache.

Cache breakpoints:
1. the last tool definition
2. the system instructions block
3. the user profile snapshot block
4. the last block of the leading historical run of message blocks
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol

import structlog

from ..data.formatters import format_profile_snapshot
from ..data.sources import load_profile_snapshot
from ..errors import ContextBuildError
from ..llm.base import (
    ContentBlock,
    LLMMessage,
    SystemBlock,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    strip_cache,
)
from ..models import CONTEXT_EVENT_TYPES, EventType

if TYPE_CHECKING:
    from ..services.user_data import UserDataStore
    from ..tools.registry import ToolRegistry
    from .session import SessionStore

logger = structlog.get_logger()


SYSTEM_PROMPT = """You are a personal trainer inside an exercise app.

You help users with:
1. Creating personalized workouts from their stats, goals and preferences
2. Answering workout questions and guiding them through exercises
3. Logging completed exercises and tracking progress

<agent_loop>
You operate in a loop. Each iteration you make exactly ONE tool call, its
result is added to the event stream, and you choose the next call.
- Read the latest user message and the most recent tool results first
- Send results to the user with a message tool before going idle
- Call idle when the task is complete
- Call message_ask_user when you genuinely need input; it ends your turn
</agent_loop>

<knowledge>
Before each request, relevant user data is injected into the conversation as
<knowledge source="..."> elements. If something you need is missing, call
fetch_data instead of guessing.
</knowledge>

<artifacts>
generate_workout creates an artifact and returns its artifact_id. The user
does not see it until you call message_notify_user with that artifact_id.
Earlier artifacts appear as <artifact> elements.
</artifacts>

<locations>
The current location decides which equipment a workout may use. When the
user says they are somewhere else, call set_current_location first.
</locations>

<tool_use_rules>
- Plain text responses without a tool call are not allowed
- Never mention tool names to the user
- If a tool fails, tell the user briefly and continue or go idle
</tool_use_rules>"""


class EventLike(Protocol):
    sequence_number: int
    event_type: str
    data: dict[str, Any]


@dataclass
class ContextSnapshot:
    """Everything sent to the model for one call. Derived, never stored."""

    system: list[SystemBlock]
    tools: list[ToolDefinition]
    messages: list[LLMMessage]
    historical_count: int
    cache_boundary: int
    event_count: int
    new_event_count: int
    max_sequence: int = -1

    def flattened_blocks(self) -> list[tuple[str, ContentBlock]]:
        """Every message block in order, paired with its role, without cache markers."""
        return [
            (message.role, strip_cache(block))
            for message in self.messages
            for block in message.content
        ]

    def historical_blocks(self) -> list[tuple[str, ContentBlock]]:
        """The leading run of blocks that came from events at or before the boundary."""
        return self.flattened_blocks()[: self.historical_count]


def knowledge_text(source: str, formatted_text: str) -> str:
    return f'<knowledge source="{source}">\n{formatted_text}\n</knowledge>'


def artifact_text(artifact_type: str, artifact_id: str, summary: Any) -> str:
    body = json.dumps(summary, sort_keys=True, ensure_ascii=False, default=str)
    return f'<artifact type="{artifact_type}" id="{artifact_id}">\n{body}\n</artifact>'


@dataclass
class _Message:
    role: str
    blocks: list[tuple[ContentBlock, bool]] = field(default_factory=list)


def _event_block(event: EventLike) -> ContentBlock | None:
    data = event.data or {}
    if event.event_type == EventType.USER_MESSAGE.value:
        return TextBlock(text=data.get("message", ""))
    if event.event_type == EventType.KNOWLEDGE.value:
        return TextBlock(text=knowledge_text(data.get("source", ""), data.get("formatted_text", "")))
    if event.event_type == EventType.ARTIFACT.value:
        return TextBlock(text=artifact_text(
            data.get("type", ""),
            data.get("artifact_id", ""),
            data.get("summary", {}),
        ))
    return None


def fold_events(events: Iterable[EventLike], cache_boundary: int) -> tuple[list[LLMMessage], int]:
    """Fold events into alternating messages.

    Returns the messages, with the cache marker on the last block of the
    leading historical run, and the length of that run in blocks.

    Raises:
        ContextBuildError: The log has unpaired or overlapping tool calls.
    """
    messages: list[_Message] = []
    pending: str | None = None
    buffered: list[tuple[ContentBlock, bool]] = []

    for event in events:
        historical = event.sequence_number <= cache_boundary
        data = event.data or {}

        if event.event_type == EventType.TOOL_CALL.value:
            if pending is not None:
                raise ContextBuildError(
                    f"Tool call {data.get('call_id')} at sequence {event.sequence_number} "
                    f"while call {pending} has no result"
                )
            block = ToolUseBlock(
                id=data["call_id"],
                name=data["tool_name"],
                input=data.get("arguments") or {},
            )
            messages.append(_Message(role="assistant", blocks=[(block, historical)]))
            pending = data["call_id"]

        elif event.event_type == EventType.TOOL_RESULT.value:
            if pending is None or data.get("call_id") != pending:
                raise ContextBuildError(
                    f"Tool result {data.get('call_id')} at sequence {event.sequence_number} "
                    "does not answer the pending tool call"
                )
            block = ToolResultBlock(
                tool_use_id=data["call_id"],
                content=str(data.get("result", "")),
                is_error=not data.get("success", False),
            )
            messages.append(_Message(role="user", blocks=[(block, historical), *buffered]))
            buffered = []
            pending = None

        else:
            block = _event_block(event)
            if block is None:
                continue
            if pending is not None:
                buffered.append((block, historical))
            elif messages and messages[-1].role == "user":
                messages[-1].blocks.append((block, historical))
            else:
                messages.append(_Message(role="user", blocks=[(block, historical)]))

    if pending is not None:
        raise ContextBuildError(f"Tool call {pending} has no result")

    historical_count = 0
    for message in messages:
        for _, historical in message.blocks:
            if not historical:
                break
            historical_count += 1
        else:
            continue
        break

    result: list[LLMMessage] = []
    index = 0
    for message in messages:
        content = []
        for block, _ in message.blocks:
            index += 1
            if index == historical_count:
                block.cache = True
            content.append(block)
        result.append(LLMMessage(role=message.role, content=content))
    return result, historical_count


def estimate_tokens(snapshot: ContextSnapshot) -> int:
    """Rough token count (about 4 characters per token)."""
    chars = sum(len(block.text) for block in snapshot.system)
    chars += sum(
        len(tool.name) + len(tool.description) + len(json.dumps(tool.parameters))
        for tool in snapshot.tools
    )
    for _, block in snapshot.flattened_blocks():
        if isinstance(block, TextBlock):
            chars += len(block.text)
        elif isinstance(block, ToolUseBlock):
            chars += len(block.name) + len(json.dumps(block.input, default=str))
        else:
            chars += len(block.content)
    return chars // 4


class ContextBuilder:
    """Builds model context for a session from its event log."""

    def __init__(
        self,
        store: "SessionStore",
        user_data: "UserDataStore",
        registry: "ToolRegistry",
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.store = store
        self.user_data = user_data
        self.registry = registry
        self.system_prompt = system_prompt

    async def build_system(self, user_id: str) -> list[SystemBlock]:
        snapshot = await load_profile_snapshot(self.user_data, user_id)
        return [
            SystemBlock(text=self.system_prompt, cache=True),
            SystemBlock(text=format_profile_snapshot(snapshot), cache=True),
        ]

    async def build(self, session_id: str) -> ContextSnapshot:
        """Assemble the full context for the next model call."""
        session = await self.store.get_session(session_id)
        events = await self.store.get_events(
            session_id,
            from_sequence=0,
            event_types=CONTEXT_EVENT_TYPES,
        )
        boundary = session.cache_boundary_sequence
        messages, historical_count = fold_events(events, boundary)

        snapshot = ContextSnapshot(
            system=await self.build_system(session.user_id),
            tools=self.registry.get_definitions(),
            messages=messages,
            historical_count=historical_count,
            cache_boundary=boundary,
            event_count=len(events),
            new_event_count=sum(1 for e in events if e.sequence_number > boundary),
            max_sequence=session.last_sequence,
        )

        logger.debug(
            "Context built",
            session_id=session_id,
            messages=len(messages),
            events=snapshot.event_count,
            new_events=snapshot.new_event_count,
            historical_blocks=historical_count,
            estimated_tokens=estimate_tokens(snapshot),
        )
        return snapshot
