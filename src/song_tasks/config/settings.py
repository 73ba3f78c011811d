"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "song-tasks"
    database_url: str = ""
    provider_base_url: str = ""
    provider_api_key: str = ""
    callback_url: str = ""
    provider_model: str = "V5"
    provider_timeout_s: float = Field(default=30.0, ge=0.5)
    provider_max_retries: int = Field(default=0, ge=0)
    provider_backoff_s: float = Field(default=0.5, ge=0.0)
    identity_cookie_name: str = "sessionId"
    identity_cookie_secure: bool = True
    identity_ttl_hours: float = Field(default=48.0, gt=0)
    task_ttl_hours: float = Field(default=48.0, gt=0)
    sweeper_enabled: bool = True
    sweep_interval_s: float = Field(default=3600.0, ge=1.0)
    reconcile_max_attempts: int = Field(default=5, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SONG_TASKS_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
