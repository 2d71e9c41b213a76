"""User settings — the notification preferences the debouncer reads."""

from pydantic import BaseModel, field_validator

THRESHOLD_MIN = 1
THRESHOLD_MAX = 100
REPEAT_INTERVAL_MIN = 1
REPEAT_INTERVAL_MAX = 600


def _clamp_int(value, low: int, high: int, default: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float("inf"), float("-inf")):
        return default
    return int(min(high, max(low, round(number))))


class Settings(BaseModel, frozen=True):
    """
    Immutable settings snapshot.

    Out-of-range numbers are clamped rather than rejected: a threshold of 0
    becomes 1, 150 becomes 100; a repeat interval of 9999 becomes 600.
    """

    threshold_percent: int = 70
    notifications_enabled: bool = True
    repeat_notifications: bool = True
    repeat_interval_sec: int = 5
    notify_on_ac: bool = True
    launch_at_startup: bool = False

    @field_validator("threshold_percent", mode="before")
    @classmethod
    def _clamp_threshold(cls, value):
        return _clamp_int(value, THRESHOLD_MIN, THRESHOLD_MAX, default=70)

    @field_validator("repeat_interval_sec", mode="before")
    @classmethod
    def _clamp_repeat_interval(cls, value):
        return _clamp_int(value, REPEAT_INTERVAL_MIN, REPEAT_INTERVAL_MAX, default=5)

    def merged(self, updates: dict) -> "Settings":
        """Return a new snapshot with known, non-None fields from ``updates`` applied."""
        data = self.model_dump()
        for key, value in updates.items():
            if key in data and value is not None:
                data[key] = value
        return Settings.model_validate(data)
