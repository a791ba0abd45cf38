"""
Configuration and settings for the client services.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import NOTIFICATIONS_PAGE_SIZE


class Settings(BaseSettings):
    """Environment-backed settings, read from `TASKFLOW_*` variables."""

    model_config = SettingsConfigDict(
        env_prefix="TASKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")

    # Firebase
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_web_api_key: Optional[str] = Field(default=None)
    fcm_device_token: Optional[str] = Field(default=None)

    # SQL document store (Postgres, or SQLite for local runs)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Event channel (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_channel_key: str = Field(default="taskflow:events")

    # Local copy of the device notification settings
    settings_path: str = Field(default="data/notification_settings.json")

    notifications_page_size: int = Field(default=NOTIFICATIONS_PAGE_SIZE)

    # Deadline reminder worker
    reminder_interval_seconds: float = Field(default=3600.0)

    log_level: str = Field(default="INFO")

    @property
    def uses_firebase(self) -> bool:
        return bool(self.firebase_project_id) and not self.use_in_memory_backends


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
