"""Runtime configuration loaded from the environment (and a local .env file).

Settings are read once per command with ``Settings()``; CLI options override
individual fields afterwards.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_URL = "https://api.deepseek.com/v1"
DEFAULT_MODEL = "deepseek-coder"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DEEPSEEK_API_KEY", "XLAGENT_API_KEY"),
    )
    api_url: str = Field(
        default=DEFAULT_API_URL,
        validation_alias=AliasChoices("DEEPSEEK_API_URL", "XLAGENT_API_URL"),
    )
    model: str = Field(default=DEFAULT_MODEL, validation_alias="XLAGENT_MODEL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, validation_alias="XLAGENT_TEMPERATURE")
    max_tokens: int = Field(default=500, ge=1, validation_alias="XLAGENT_MAX_TOKENS")
    timeout: float = Field(default=60.0, gt=0, validation_alias="XLAGENT_TIMEOUT")
    max_operations: int = Field(default=200, ge=1, validation_alias="XLAGENT_MAX_OPERATIONS")
    events: bool = Field(default=False, validation_alias="XLAGENT_EVENTS")

    @field_validator("api_url")
    @classmethod
    def _base_url(cls, v: str) -> str:
        # Accept the full chat-completions endpoint as well as the API root.
        v = v.rstrip("/")
        suffix = "/chat/completions"
        if v.endswith(suffix):
            v = v[: -len(suffix)]
        return v
