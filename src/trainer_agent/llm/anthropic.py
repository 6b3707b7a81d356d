"""
Anthropic Claude LLM provider with native prompt caching.
"""

from typing import Any

import anthropic
import structlog

from .base import (
    BaseLLM,
    ContentBlock,
    LLMMessage,
    LLMResponse,
    SystemBlock,
    TextBlock,
    TokenUsage,
    ToolCall,
    ToolChoice,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    parse_arguments,
)

logger = structlog.get_logger()

EPHEMERAL = {"type": "ephemeral"}


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_block(self, block: ContentBlock) -> dict[str, Any]:
        if isinstance(block, TextBlock):
            converted: dict[str, Any] = {"type": "text", "text": block.text}
        elif isinstance(block, ToolUseBlock):
            converted = {
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            }
        elif isinstance(block, ToolResultBlock):
            converted = {
                "type": "tool_result",
                "tool_use_id": block.tool_use_id,
                "content": block.content,
            }
            if block.is_error:
                converted["is_error"] = True
        else:
            raise TypeError(f"Unsupported content block: {block!r}")

        if block.cache:
            converted["cache_control"] = EPHEMERAL
        return converted

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic format."""
        return [
            {
                "role": msg.role,
                "content": [self._convert_block(block) for block in msg.content],
            }
            for msg in messages
        ]

    def _convert_system(self, system: list[SystemBlock]) -> list[dict[str, Any]]:
        converted = []
        for block in system:
            item: dict[str, Any] = {"type": "text", "text": block.text}
            if block.cache:
                item["cache_control"] = EPHEMERAL
            converted.append(item)
        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        converted = []
        for tool in tools:
            item: dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            if tool.cache:
                item["cache_control"] = EPHEMERAL
            converted.append(item)
        return converted

    def _convert_tool_choice(self, tool_choice: ToolChoice) -> dict[str, Any]:
        if tool_choice == "auto":
            return {"type": "auto"}
        if tool_choice == "any":
            return {"type": "any", "disable_parallel_tool_use": True}
        return {"type": "tool", "name": tool_choice, "disable_parallel_tool_use": True}

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system: list[SystemBlock] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(messages),
        }

        if system:
            kwargs["system"] = self._convert_system(system)

        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = self._convert_tool_choice(tool_choice)

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise

        content = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                arguments, parse_error = parse_arguments(block.input)
                if parse_error:
                    logger.warning("Malformed tool arguments", tool_name=block.name, error=parse_error)
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=arguments,
                    parse_error=parse_error,
                ))

        usage = response.usage
        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cache_read_tokens=getattr(usage, "cache_read_input_tokens", None) or 0,
                cache_write_tokens=getattr(usage, "cache_creation_input_tokens", None) or 0,
            ),
            model=response.model,
            stop_reason=response.stop_reason,
            raw_response=response,
        )
