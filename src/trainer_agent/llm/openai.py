"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).

OpenAI caches long prompt prefixes automatically, so cache markers on blocks
are accepted and ignored here.
"""

import json
from typing import Any

import openai
import structlog

from .base import (
    BaseLLM,
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


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format.

        Tool results become ``tool`` role messages and must come straight after
        the assistant message that issued the call, so they are emitted before
        any text blocks that share the same user message.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "assistant":
                text = "".join(b.text for b in msg.content if isinstance(b, TextBlock))
                tool_calls = [
                    {
                        "id": b.id,
                        "type": "function",
                        "function": {
                            "name": b.name,
                            "arguments": json.dumps(b.input),
                        },
                    }
                    for b in msg.content
                    if isinstance(b, ToolUseBlock)
                ]
                item: dict[str, Any] = {"role": "assistant", "content": text or None}
                if tool_calls:
                    item["tool_calls"] = tool_calls
                converted.append(item)
                continue

            texts = []
            for block in msg.content:
                if isinstance(block, ToolResultBlock):
                    converted.append({
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": block.content,
                    })
                elif isinstance(block, TextBlock):
                    texts.append(block.text)
            if texts:
                converted.append({"role": "user", "content": "\n\n".join(texts)})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _convert_tool_choice(self, tool_choice: ToolChoice) -> Any:
        if tool_choice == "auto":
            return "auto"
        if tool_choice == "any":
            return "required"
        return {"type": "function", "function": {"name": tool_choice}}

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system: list[SystemBlock] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> LLMResponse:
        """Generate a response from GPT."""
        converted_messages = self._convert_messages(messages)

        if system:
            converted_messages.insert(0, {
                "role": "system",
                "content": "\n\n".join(block.text for block in system),
            })

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted_messages,
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = self._convert_tool_choice(tool_choice)
            kwargs["parallel_tool_calls"] = False

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise

        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if message.tool_calls:
            for tc in message.tool_calls:
                arguments, parse_error = parse_arguments(tc.function.arguments)
                if parse_error:
                    logger.warning("Malformed tool arguments", tool_name=tc.function.name, error=parse_error)
                tool_calls.append(ToolCall(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=arguments,
                    parse_error=parse_error,
                ))

        usage = TokenUsage()
        if response.usage:
            details = getattr(response.usage, "prompt_tokens_details", None)
            cached = (getattr(details, "cached_tokens", None) or 0) if details else 0
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens - cached,
                output_tokens=response.usage.completion_tokens,
                cache_read_tokens=cached,
            )

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )
