from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecretConfig(BaseSettings):
    """
    Sensitive config.

    This module contains no secrets, only loading logic. Values come from
    environment variables or an optional local `.env.secrets` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env.secrets",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Optional shared token for the HTTP API (empty disables the check)
    api_token: SecretStr | None = Field(default=None, alias="API_TOKEN")

    # Optional Redis backend for the reprocess cache
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
