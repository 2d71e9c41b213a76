"""
Notification Debouncer — turns battery samples into low-battery alerts
without flooding the user.

States:
  IDLE → ALERTED → (REPEATING) → IDLE

- IDLE + should_notify fires one alert and, if repeat is on, starts the
  repeat sub-timer
- REPEATING re-samples on every sub-tick and alerts again while
  should_notify holds; once it does not, the sub-timer stops
- The alert flag clears only above threshold + 2 (hysteresis band), on a
  change of power source, or when on AC and not notifying

The transition functions are pure: they take a DebounceState and return a
Transition holding the next state plus the side effects to perform.
"""

from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from battery_watchdog.models.debounce import IDLE, DebounceState
from battery_watchdog.models.sample import Sample
from battery_watchdog.models.settings import Settings
from battery_watchdog.sampling.sampler import BatterySampler
from battery_watchdog.scheduler.timer import Timer, TimerFactory, periodic_timer

log = structlog.get_logger()

HYSTERESIS_BAND = 2
REPEAT_INTERVAL_CEILING = 60


class Transition(BaseModel, frozen=True):
    """Next state plus the side effects the owner must carry out."""

    state: DebounceState
    alert: bool = False
    start_repeat: bool = False
    stop_repeat: bool = False


def should_notify(sample: Sample, settings: Settings) -> bool:
    if not settings.notifications_enabled:
        return False
    if not sample.on_battery and not settings.notify_on_ac:
        return False
    if not sample.percent_known:
        return False
    return sample.percent <= settings.threshold_percent


def above_band(sample: Sample, settings: Settings) -> bool:
    return sample.percent_known and sample.percent > settings.threshold_percent + HYSTERESIS_BAND


def repeat_interval_seconds(settings: Settings) -> int:
    """Repeat cadence; capped at 60s whatever the stored setting allows."""
    return min(REPEAT_INTERVAL_CEILING, max(1, settings.repeat_interval_sec))


def _reset_due(sample: Sample, settings: Settings, notify: bool, power_changed: bool) -> bool:
    if power_changed or above_band(sample, settings):
        return True
    return not notify and not sample.on_battery


def on_poll(
    state: DebounceState,
    sample: Sample,
    settings: Settings,
    power_changed: bool = False,
) -> Transition:
    """Transition for one macro-poll sample."""
    notify = should_notify(sample, settings)
    stop = False
    if _reset_due(sample, settings, notify, power_changed):
        stop = state.repeat_timer_active
        state = IDLE

    if not notify:
        return Transition(
            state=DebounceState(last_notified=state.last_notified),
            stop_repeat=stop or state.repeat_timer_active,
        )

    repeat = settings.repeat_notifications
    return Transition(
        state=DebounceState(last_notified=True, repeat_timer_active=repeat),
        alert=not state.last_notified,
        start_repeat=repeat and not state.repeat_timer_active,
        stop_repeat=stop or (state.repeat_timer_active and not repeat),
    )


def on_repeat_tick(state: DebounceState, sample: Sample, settings: Settings) -> Transition:
    """Transition for one repeat sub-timer tick."""
    if not state.repeat_timer_active:
        return Transition(state=state)
    notify = should_notify(sample, settings)
    if notify and settings.repeat_notifications:
        return Transition(state=state, alert=True)
    last_notified = state.last_notified and not _reset_due(sample, settings, notify, False)
    return Transition(state=DebounceState(last_notified=last_notified), stop_repeat=True)


def status_title(sample: Optional[Sample], settings: Settings) -> str:
    """Short tray-style status: "83%", "--%", or "12% Please charge"."""
    if sample is None or not sample.percent_known:
        return "--%"
    base = f"{sample.percent}%"
    low = sample.percent <= settings.threshold_percent and (sample.on_battery or settings.notify_on_ac)
    return f"{base} Please charge" if low else base


class NotificationDebouncer:
    """Owns the DebounceState and the repeat sub-timer."""

    def __init__(
        self,
        sampler: BatterySampler,
        settings_provider: Callable[[], Settings],
        notify: Callable[[str, str], None],
        title: str = "Battery Monitor",
        message: str = "Please charge your device",
        timer_factory: TimerFactory = periodic_timer,
    ):
        self.sampler = sampler
        self._settings = settings_provider
        self._notify = notify
        self.title = title
        self.message = message
        self._timer_factory = timer_factory
        self._state: DebounceState = IDLE
        self._repeat_timer: Optional[Timer] = None
        self._last_sample: Optional[Sample] = None
        self._last_on_battery: Optional[bool] = None
        self.alerts_fired = 0

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def last_sample(self) -> Optional[Sample]:
        return self._last_sample

    @property
    def repeat_timer_running(self) -> bool:
        return self._repeat_timer is not None and self._repeat_timer.active

    async def poll_once(self) -> Transition:
        """Macro-poll: sample, then fold the sample into the state."""
        sample = await self.sampler.sample()
        return self.observe(sample, self._settings())

    def observe(self, sample: Sample, settings: Settings) -> Transition:
        power_changed = (
            self._last_on_battery is not None and self._last_on_battery != sample.on_battery
        )
        self._last_on_battery = sample.on_battery
        self._last_sample = sample
        if power_changed:
            log.info("power_source_changed", on_battery=sample.on_battery)
        transition = on_poll(self._state, sample, settings, power_changed)
        self._apply(transition, settings)
        return transition

    async def repeat_tick(self) -> Transition:
        """Repeat sub-tick: takes its own sample, since macro-polls are slower."""
        sample = await self.sampler.sample()
        settings = self._settings()
        self._last_sample = sample
        transition = on_repeat_tick(self._state, sample, settings)
        self._apply(transition, settings)
        return transition

    def reset(self) -> None:
        """Forget the current episode (power source changed, resume, ...)."""
        self._stop_repeat_timer()
        self._state = IDLE
        self._last_on_battery = None

    def stop(self) -> None:
        """Stop the repeat sub-timer for shutdown or suspend."""
        self._stop_repeat_timer()
        self._state = DebounceState(last_notified=self._state.last_notified)

    def _apply(self, transition: Transition, settings: Settings) -> None:
        if transition.stop_repeat:
            self._stop_repeat_timer()
        if transition.start_repeat:
            self._start_repeat_timer(repeat_interval_seconds(settings))
        if transition.state.phase != self._state.phase:
            log.info("debounce_transition", old=self._state.phase.value, new=transition.state.phase.value)
        self._state = transition.state
        if transition.alert:
            self._fire()

    def _fire(self) -> None:
        self.alerts_fired += 1
        try:
            self._notify(self.title, self.message)
        except Exception:
            log.exception("alert_failed")

    def _start_repeat_timer(self, interval: int) -> None:
        self._stop_repeat_timer()
        self._repeat_timer = self._timer_factory("repeat-notify", float(interval), self._repeat_tick_callback)
        self._repeat_timer.start()
        log.info("repeat_timer_started", interval_seconds=interval)

    def _stop_repeat_timer(self) -> None:
        if self._repeat_timer is not None:
            self._repeat_timer.stop()
            self._repeat_timer = None
            log.info("repeat_timer_stopped")

    async def _repeat_tick_callback(self) -> None:
        await self.repeat_tick()
