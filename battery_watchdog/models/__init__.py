"""Battery Watchdog data models."""

from battery_watchdog.models.command import (
    Command,
    CommandKind,
    CommandResult,
    FailureCategory,
    FailureReason,
    UnknownCommandError,
)
from battery_watchdog.models.config import WatchdogConfig
from battery_watchdog.models.debounce import DebouncePhase, DebounceState
from battery_watchdog.models.sample import Sample
from battery_watchdog.models.settings import Settings

__all__ = [
    "Command",
    "CommandKind",
    "CommandResult",
    "DebouncePhase",
    "DebounceState",
    "FailureCategory",
    "FailureReason",
    "Sample",
    "Settings",
    "UnknownCommandError",
    "WatchdogConfig",
]
