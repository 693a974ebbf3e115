"""
Runtime settings for the chat plugin runtime.

Values come from environment variables or a local .env file. Plugin
discovery, per-plugin config, lifecycle timeouts and the LiteLLM proxy
connection are all configured here and read through get_settings().
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool | None = Field(
        default=None,
        description="Force JSON log output. Defaults to True in prod, False elsewhere.",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM Proxy
    # ------------------------------------------------------------------ #
    litellm_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for LiteLLM proxy",
    )
    litellm_default_model: str = Field(
        default="openai/gpt-4o-mini",
        description="Default LLM model identifier (LiteLLM format)",
    )
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2000, ge=1)
    llm_request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for non-streaming completions and model listing",
    )

    # ------------------------------------------------------------------ #
    # Plugins
    # ------------------------------------------------------------------ #
    plugin_modules: list[str] = Field(
        default=[
            "chatspace.plugins.builtin.message_actions",
            "chatspace.plugins.builtin.message_rating",
            "chatspace.plugins.builtin.code_copy",
            "chatspace.plugins.builtin.pii_redaction",
            "chatspace.plugins.builtin.calculator",
        ],
        description="Dotted module paths loaded by PluginManager.load_plugins()",
    )
    plugin_entry_points: bool = Field(
        default=True,
        description="Also discover plugins from the 'chatspace.plugins' entry-point group",
    )
    disabled_plugins: list[str] = Field(
        default_factory=list,
        description="Plugin ids that are registered but start disabled",
    )
    plugin_config: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-plugin settings keyed by plugin id, passed to initialize()",
    )
    plugin_init_timeout_seconds: float = Field(default=10.0, gt=0)
    plugin_dispose_timeout_seconds: float = Field(default=10.0, gt=0)
    interceptor_timeout_seconds: float | None = Field(
        default=None,
        description="Per-interceptor time limit. None disables the limit.",
    )
    tool_timeout_seconds: float | None = Field(
        default=30.0,
        description="Per-tool execution time limit. None disables the limit.",
    )
    plugin_fault_threshold: int | None = Field(
        default=None,
        description=(
            "Consecutive faults after which an active plugin is moved to the "
            "error state. None keeps faulting plugins active."
        ),
    )

    # ------------------------------------------------------------------ #
    # Streaming
    # ------------------------------------------------------------------ #
    stream_idle_timeout_seconds: float | None = Field(
        default=120.0,
        description="Max wait for the next upstream chunk before the turn fails",
    )

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:5173"],
        description="Origins allowed to call the API outside dev mode",
    )

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    @property
    def use_json_logs(self) -> bool:
        if self.json_logs is not None:
            return self.json_logs
        return self.is_prod


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance (one per process)."""
    return Settings()
