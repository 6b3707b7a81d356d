"""
LLM factory for creating provider instances.

Supports: Anthropic Claude, OpenAI GPT, OpenRouter.
"""

from typing import Literal

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM


def create_llm(
    config: LLMConfig | None = None,
    settings: Settings | None = None,
    purpose: Literal["agent", "selector"] = "agent",
) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK, prompt caching)
    - openai -> OpenAILLM (native OpenAI SDK)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config(purpose)

    provider = config.provider

    if provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "openai":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "openrouter":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url or "https://openrouter.ai/api/v1",
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
