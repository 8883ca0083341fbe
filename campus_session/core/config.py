"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, PositiveFloat, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionConfig(BaseModel):
    """Session lifecycle knobs. All durations are in seconds."""

    session_timeout: PositiveFloat = 24 * 60 * 60
    refresh_threshold: PositiveFloat = 5 * 60
    max_inactivity: PositiveFloat = 2 * 60 * 60
    persist_session: bool = True

    @model_validator(mode="after")
    def _check_threshold(self) -> "SessionConfig":
        if self.refresh_threshold >= self.session_timeout:
            raise ValueError("refresh_threshold must be smaller than session_timeout")
        return self


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "campus-session"
    debug: bool = False

    # Session lifecycle (seconds)
    session_timeout: PositiveFloat = 24 * 60 * 60
    refresh_threshold: PositiveFloat = 5 * 60
    max_inactivity: PositiveFloat = 2 * 60 * 60
    persist_session: bool = True
    session_storage_key: str = "campus_session"

    # Role given to profiles built from identity claims when the profile store is unreachable
    fallback_role: str = "student"

    # At-rest encryption of persisted session snapshots
    # The key never lives in the store it protects. Without SECRET_KEY one is
    # generated once and kept in secret_key_file
    secret_key: Optional[str] = None
    secret_key_file: str = "./data/.secret_key"
    encryption_salt: Optional[str] = None
    encryption_kdf_iterations: int = 300_000

    # Audit log pipeline
    log_buffer_size: int = Field(default=100, gt=0)
    log_flush_interval: PositiveFloat = 5.0
    log_segment_max_bytes: int = Field(default=1024 * 1024, gt=0)
    log_segment_prefix: str = "logs_"
    log_mirror_to_stdlib: bool = True

    # Durable key-value store
    database_url: str = "sqlite:///./data/campus_session.db"

    @model_validator(mode="after")
    def _check_threshold(self) -> "Settings":
        if self.refresh_threshold >= self.session_timeout:
            raise ValueError("refresh_threshold must be smaller than session_timeout")
        return self

    def session_config(self) -> SessionConfig:
        """Session knobs as a standalone config object"""
        return SessionConfig(
            session_timeout=self.session_timeout,
            refresh_threshold=self.refresh_threshold,
            max_inactivity=self.max_inactivity,
            persist_session=self.persist_session,
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment"""
    return Settings()
