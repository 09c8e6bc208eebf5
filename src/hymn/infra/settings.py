"""
Application settings for Hymn.

This module defines all configuration settings for Hymn using Pydantic BaseSettings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    # Persistence
    database_url: str = Field(default="sqlite:///hymn.db", alias="DATABASE_URL")
    echo_sql: bool = Field(default=False, alias="ECHO_SQL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    env: str = Field(default="dev", alias="ENV")  # dev|prod|test

    # Broadcast timeline
    block_duration_minutes: int = Field(default=30, ge=1, le=1440, alias="HYMN_BLOCK_MINUTES")
    window_hours: int = Field(default=12, ge=1, alias="HYMN_WINDOW_HOURS")
    session_hours: int = Field(default=12, ge=1, alias="HYMN_SESSION_HOURS")
    stale_block_minutes: int = Field(default=0, ge=0, alias="HYMN_STALE_BLOCK_MINUTES")  # 0 = off
    collaborator_timeout_seconds: float = Field(default=20.0, gt=0, alias="HYMN_COLLABORATOR_TIMEOUT")
    strict_invariants: bool = Field(default=False, alias="HYMN_STRICT_INVARIANTS")
    session_key: str = Field(default="hymn_broadcast_session", alias="HYMN_SESSION_KEY")
    calendar_check: Literal["keywords", "event_ids", "off"] = Field(
        default="event_ids", alias="HYMN_CALENDAR_CHECK"
    )
    # IANA zone for day-part selection and spoken times
    timezone: str = Field(default="UTC", alias="HYMN_TIMEZONE")

    # Headlines (NewsAPI-compatible HTTP API); empty key = no news
    news_api_key: str = Field(default="", alias="NEWS_API_KEY")
    news_base_url: str = Field(default="https://newsapi.org/v2", alias="NEWS_API_BASE_URL")

    # Content generation / speech synthesis (OpenAI-compatible HTTP API)
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    content_model: str = Field(default="gpt-4o", alias="HYMN_CONTENT_MODEL")
    speech_model: str = Field(default="tts-1-hd", alias="HYMN_SPEECH_MODEL")
    voice_persona: str = Field(default="nova", alias="HYMN_VOICE_PERSONA")

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def invariants_fail_loudly(self) -> bool:
        """Invariant violations raise in dev/test, degrade to fallback in prod."""
        return self.strict_invariants or self.env in ("dev", "test")


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("HYMN_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)

    # 3) Walk up from this file to find nearest .env
    here = Path(__file__).resolve()
    for parent in here.parents:
        candidate = parent / ".env"
        if candidate.is_file():
            return str(candidate)
    return None


# Global settings instance (load from best-effort .env discovery)
_env_file = _resolve_env_file()
settings = Settings(_env_file=_env_file) if _env_file else Settings()  # type: ignore[call-arg]
