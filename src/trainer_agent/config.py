"""
Configuration management for trainer-agent

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["anthropic", "openai", "openrouter"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "anthropic"
    model: str = "claude-sonnet-4-5"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Trainer-Agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    api_token: str = Field(default="", description="Bearer token required by the HTTP API (empty disables auth)")

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Main agent model
    agent_provider: Provider = "anthropic"
    agent_model: str = "claude-sonnet-4-5"

    # Context selector (cheap model)
    selector_enabled: bool = True
    selector_provider: Provider = "anthropic"
    selector_model: str = "claude-haiku-4-5"

    max_tokens: int = 4096
    temperature: float = 0.7

    # Agent loop
    max_iterations: int = Field(default=10, description="Maximum tool iterations per user turn")
    model_timeout_seconds: float = Field(default=60.0, description="Timeout for a single model call")
    tool_timeout_seconds: float = Field(default=30.0, description="Timeout for a single tool execution")
    recent_events_limit: int = Field(default=20, description="Events returned by session introspection")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/trainer_agent.db",
        description="Database connection URL"
    )

    # Reference user data (JSON keyed by user id) for the in-memory store
    user_data_path: str | None = Field(default=None, description="Path to a JSON file seeding user data")

    @field_validator("max_iterations")
    @classmethod
    def validate_max_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_iterations must be at least 1")
        return v

    def _api_key_for(self, provider: str) -> str:
        return {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }.get(provider, "")

    def get_llm_config(self, purpose: Literal["agent", "selector"] = "agent") -> LLMConfig:
        """Get LLM configuration for the main agent or the context selector."""
        if purpose == "selector":
            provider, model = self.selector_provider, self.selector_model
            max_tokens = min(self.max_tokens, 1024)
            temperature = 0.0
        else:
            provider, model = self.agent_provider, self.agent_model
            max_tokens = self.max_tokens
            temperature = self.temperature

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        return LLMConfig(
            provider=provider,
            model=model,
            api_key=self._api_key_for(provider),
            base_url=base_url_map.get(provider),
            max_tokens=max_tokens,
            temperature=temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
