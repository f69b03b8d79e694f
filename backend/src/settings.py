"""Environment-based settings for the smartwait command line."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SmartWaitSettings(BaseSettings):
    """
    Command-line settings.

    Loads configuration from environment variables with SMARTWAIT_ prefix.
    Timeout tuning variables with the same prefix are read by
    ``load_smart_timeout_config`` and ignored here.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMARTWAIT_",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str | None = None
    headless: bool = True
    config_file: Path | None = None
    viewport_width: int = Field(default=1280, ge=1)
    viewport_height: int = Field(default=720, ge=1)
    navigation_timeout_ms: int = Field(default=30000, ge=1)
