"""
Base classes for LLM providers.

The message contract is provider-neutral: role-tagged messages made of typed
content blocks, a separate tool-definition list and separate system blocks.
Any block may carry a ``cache`` flag marking a prompt-cache breakpoint.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Union


@dataclass
class TextBlock:
    """Plain text content."""

    text: str
    cache: bool = False
    type: Literal["text"] = "text"


@dataclass
class ToolUseBlock:
    """A tool invocation made by the assistant."""

    id: str
    name: str
    input: dict[str, Any]
    cache: bool = False
    type: Literal["tool_use"] = "tool_use"


@dataclass
class ToolResultBlock:
    """The outcome of a tool invocation, sent back on the user side."""

    tool_use_id: str
    content: str
    is_error: bool = False
    cache: bool = False
    type: Literal["tool_result"] = "tool_result"


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def strip_cache(block: ContentBlock) -> ContentBlock:
    """Return a copy of the block without its cache marker."""
    return replace(block, cache=False)


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant"]
    content: list[ContentBlock] = field(default_factory=list)


@dataclass
class SystemBlock:
    """A system-instruction segment."""

    text: str
    cache: bool = False


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]
    cache: bool = False


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]
    # Set when the provider sent arguments that are not a JSON object
    parse_error: str | None = None


def parse_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    """Decode provider tool arguments into a dict.

    Returns the arguments and, when they could not be decoded into a JSON
    object, an error message with empty arguments in their place.
    """
    if raw is None or raw == "":
        return {}, None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            return {}, f"arguments are not valid JSON ({e.msg} at position {e.pos})"
    if not isinstance(raw, dict):
        return {}, f"arguments must be a JSON object, got {type(raw).__name__}"
    return dict(raw), None


@dataclass
class TokenUsage:
    """Token accounting for one model call."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total_input_tokens(self) -> int:
        return self.input_tokens + self.cache_read_tokens + self.cache_write_tokens


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    stop_reason: str | None = None
    raw_response: Any = None


# "auto" lets the model answer in text, "any" forces exactly one tool call,
# any other value forces that specific tool.
ToolChoice = str


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system: list[SystemBlock] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
