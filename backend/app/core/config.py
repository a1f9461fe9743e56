from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Assistant Hub"
    app_env: Literal["development", "staging", "production"] = "development"
    app_version: str = "0.1.0"
    debug: bool = False

    api_prefix: str = "/api"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    database_url: str = "sqlite+aiosqlite:///./assistant_hub.db"

    secret_key: str = "changeme_to_64_characters_minimum_for_dev_only"
    access_token_expire_minutes: int = 15
    refresh_token_expire_hours: int = 8

    max_concurrent_sessions: int = 3

    response_cache_ttl_seconds: int = 300
    response_cache_sweep_interval_seconds: int = 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
