"""
LLM module for provider-neutral model access.

Providers:
- Anthropic Claude (native SDK, prompt caching)
- OpenAI GPT (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import (
    BaseLLM,
    ContentBlock,
    LLMMessage,
    LLMResponse,
    SystemBlock,
    TextBlock,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "ContentBlock",
    "LLMMessage",
    "LLMResponse",
    "SystemBlock",
    "TextBlock",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
