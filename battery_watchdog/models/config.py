"""Process configuration, read from the environment."""

from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_settings_path() -> str:
    return str(Path.home() / ".config" / "battery-watchdog" / "settings.json")


class WatchdogConfig(BaseSettings):
    """Configuration for the watchdog loops and the helper channel."""

    model_config = SettingsConfigDict(env_prefix="BATTERY_WATCHDOG_")

    helper_path: str = "btctl"
    poll_interval_seconds: float = Field(default=60.0, gt=0)
    support_refresh_seconds: float = Field(default=10.0, gt=0)
    command_timeout_seconds: float = Field(default=5.0, gt=0)
    approve_timeout_seconds: int = Field(default=20, ge=1)
    text_query_command: List[str] = ["pmset", "-g", "batt"]
    text_query_timeout_seconds: float = Field(default=5.0, gt=0)
    settings_path: str = Field(default_factory=_default_settings_path)
    notification_title: str = "Battery Monitor"
    charge_message: str = "Please charge your device"
    bootstrap_on_start: bool = True
    log_level: str = "INFO"
