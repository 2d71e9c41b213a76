"""Debounce state for threshold notifications."""

from enum import Enum

from pydantic import BaseModel, model_validator


class DebouncePhase(str, Enum):
    IDLE = "idle"
    ALERTED = "alerted"
    REPEATING = "repeating"


class DebounceState(BaseModel, frozen=True):
    """
    Whether the current low-battery episode has been alerted, and whether the
    repeat sub-timer is running. Transitions return a new value.
    """

    last_notified: bool = False
    repeat_timer_active: bool = False

    @model_validator(mode="after")
    def _repeat_implies_notified(self) -> "DebounceState":
        if self.repeat_timer_active and not self.last_notified:
            raise ValueError("repeat timer cannot run before the first alert")
        return self

    @property
    def phase(self) -> DebouncePhase:
        if not self.last_notified:
            return DebouncePhase.IDLE
        if self.repeat_timer_active:
            return DebouncePhase.REPEATING
        return DebouncePhase.ALERTED


IDLE = DebounceState()
