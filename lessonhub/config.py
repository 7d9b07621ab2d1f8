from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lessonhub.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings resolved from the environment and an optional .env file."""

    # Session tokens
    session_ttl_hours: float = env_field(
        24,
        "SESSION_TTL_HOURS",
        description="Hours a bearer token stays valid, measured from creation",
    )
    max_sessions_per_user: int = env_field(
        5,
        "MAX_SESSIONS_PER_USER",
        description="Live tokens an account may hold once a login completes",
    )
    session_prune_to: int = env_field(
        4,
        "SESSION_PRUNE_TO",
        description="Older tokens kept when the cap is reached, before the new one is added",
    )
    allow_admin_signup: bool = env_field(
        False,
        "ALLOW_ADMIN_SIGNUP",
        description="Accept role=admin on public registration",
    )
    # Envelope / CORS
    frontend_url: str = env_field("*", "FRONTEND_URL")
    # AI provider
    openai_api_key: str | None = env_field(None, "OPENAI_API_KEY")
    openai_base_url: str = env_field("https://api.openai.com/v1", "OPENAI_BASE_URL")
    openai_model: str = env_field("gpt-3.5-turbo", "OPENAI_MODEL")
    ai_max_tokens: int = env_field(150, "AI_MAX_TOKENS")
    ai_temperature: float = env_field(0.7, "AI_TEMPERATURE")
    ai_timeout_seconds: float = env_field(30.0, "AI_TIMEOUT_SECONDS")
    # Storage
    state_root: str | None = env_field(
        None,
        "STATE_ROOT",
        description="Directory for the memory store's JSON snapshot; unset keeps state in-process only",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("session_ttl_hours")
    @classmethod
    def _validate_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SESSION_TTL_HOURS must be positive")
        return value

    @field_validator("max_sessions_per_user")
    @classmethod
    def _validate_max_sessions(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MAX_SESSIONS_PER_USER must be at least 1")
        return value

    @model_validator(mode="after")
    def _validate_prune_window(self):
        if not 0 <= self.session_prune_to < self.max_sessions_per_user:
            raise ValueError(
                "SESSION_PRUNE_TO must be >= 0 and lower than MAX_SESSIONS_PER_USER"
            )
        return self

    @field_validator("openai_api_key")
    @classmethod
    def _blank_key_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            logger.warning("openai_api_key_blank")
            return None
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
