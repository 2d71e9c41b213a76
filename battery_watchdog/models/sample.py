"""Battery sample — one reading of charge level and power source."""

from typing import Optional

from pydantic import BaseModel, field_validator


def clamp_percent(value) -> Optional[int]:
    """Normalize a raw percent to an int in [0, 100]; non-numeric is unknown."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(min(100, max(0, round(number))))


class Sample(BaseModel, frozen=True):
    """A power reading. ``percent`` is None when the level is unknown."""

    percent: Optional[int] = None
    on_battery: bool = False
    source: str = "none"

    @field_validator("percent", mode="before")
    @classmethod
    def _clamp(cls, value):
        return clamp_percent(value)

    @property
    def percent_known(self) -> bool:
        return self.percent is not None

    @classmethod
    def unknown(cls) -> "Sample":
        return cls(percent=None, on_battery=False, source="none")
