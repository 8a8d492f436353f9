"""Relay Service Configuration using Pydantic Settings.

Provides centralized configuration for the chat relay including:
- Upstream completion endpoint (URL, credential, model, sampling limits)
- Relay behaviour switches (streaming, mock stream)
- Context store backend for the auxiliary tools
- HTTP connection pool and timeouts

Configuration is loaded from environment variables and .env files using
Pydantic Settings. The @lru_cache decorator ensures a single settings
instance is shared across the application.

Last Grunted: 10/19/2026 09:40:00 AM UTC
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OPENAI_API_URL: str = "https://api.openai.com/v1/chat/completions"


class RelaySettings(BaseSettings):
    """Core service configuration for the chat relay.

    Settings are grouped by category:
    - Upstream settings: endpoint URL, bearer credential, model, temperature, max tokens
    - Relay settings: streaming switch, mock stream switch, CORS origins
    - Tools settings: context store backend, Redis URL, truncation limits
    - HTTP settings: pool sizes and timeouts for the shared client

    The credential is only ever read server-side. It is never logged and
    never echoed back to callers.

    Example:
        >>> settings = get_settings()
        >>> settings.model
        'gpt-4o-mini'

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream completion endpoint
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("openai_api_key", "agent_api_key"),
        description="Bearer credential for the upstream completion API",
    )
    openai_api_url: str = Field(
        default=DEFAULT_OPENAI_API_URL,
        validation_alias=AliasChoices("openai_api_url", "agent_api_url"),
        description="Chat Completions endpoint URL",
    )
    model: str = Field(default="gpt-4o-mini", validation_alias="relay_model")
    temperature: float = Field(default=0.7, validation_alias="relay_temperature")
    max_tokens: int = Field(default=300, validation_alias="relay_max_tokens")

    # Relay behaviour
    relay_stream: bool = Field(default=True, description="Stream upstream tokens on /api/agent")
    use_agent_mock: bool = Field(default=False, description="Serve a simulated stream without calling upstream")
    cors_origins: str = Field(default="http://localhost:3000", description="Comma-separated CORS origins")

    # Tools
    context_store_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    context_ttl_seconds: int = Field(default=86400)
    fetch_max_chars: int = Field(default=800, validation_alias="tools_fetch_max_chars")
    summary_max_chars: int = Field(default=600, validation_alias="tools_summary_max_chars")

    # Shared HTTP client
    http_max_connections: int = Field(default=100)
    http_max_keepalive: int = Field(default=20)
    http_timeout_connect: float = Field(default=5.0)
    http_timeout_read: float = Field(default=120.0)
    http_timeout_write: float = Field(default=30.0)
    http_timeout_pool: float = Field(default=10.0)

    def has_credentials(self) -> bool:
        """Return True when both the upstream URL and credential are usable.

        An empty string counts as unset.
        """
        return bool(self.openai_api_key) and bool(self.openai_api_url)

    def get_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> RelaySettings:
    """Get cached singleton settings instance.

    Returns:
        RelaySettings: Cached configuration instance.

    Note:
        To reload settings (e.g., after env changes), call get_settings.cache_clear()
        before calling get_settings() again.

    Last Grunted: 10/19/2026 09:40:00 AM UTC
    """
    return RelaySettings()
