"""
Watchdog — wires the helper channel, escalation, sampling and notifications
together and owns the timers.

Lifecycle:
  start() → immediate poll, poll timer, support-refresh timer, and a
  best-effort bootstrap when the helper is present
  stop()  → every timer (poll, support refresh, repeat) stopped on one path

Behavioral Contract:
- execute_command(), sample_battery(), bootstrap(), test_notify() and the
  helper-settings passthrough return an OperationResult and never raise
- Power-source events reset the debounce state and restart polling
- Suspend stops polling; resume restarts it with an immediate poll
"""

import asyncio
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel

from battery_watchdog.escalation.bootstrap import BootstrapSequencer
from battery_watchdog.escalation.engine import EscalationEngine
from battery_watchdog.helper.channel import HelperChannel
from battery_watchdog.models.command import Command, CommandKind, CommandResult, UnknownCommandError
from battery_watchdog.models.config import WatchdogConfig
from battery_watchdog.models.sample import Sample
from battery_watchdog.models.settings import Settings
from battery_watchdog.notifications.debouncer import NotificationDebouncer, status_title
from battery_watchdog.notifications.notifier import Notifier
from battery_watchdog.sampling.sampler import BatterySampler
from battery_watchdog.scheduler.timer import Timer, TimerFactory, periodic_timer
from battery_watchdog.settings_store.store import SettingsStore

log = structlog.get_logger()


class PowerEvent(str, Enum):
    ON_BATTERY = "on_battery"
    ON_AC = "on_ac"
    SUSPEND = "suspend"
    RESUME = "resume"


class OperationResult(BaseModel):
    """Structured outcome of a watchdog entry point."""

    operation: str
    ok: bool
    reason: Optional[str] = None
    code: Optional[int] = None
    message: Optional[str] = None
    data: dict = {}

    @classmethod
    def from_command(cls, operation: str, result: CommandResult) -> "OperationResult":
        return cls(
            operation=operation,
            ok=result.ok,
            reason=result.reason.value if result.reason else None,
            code=result.code,
            message=result.user_message(),
            data=dict(result.payload),
        )

    @classmethod
    def error(cls, operation: str, reason: str, message: str) -> "OperationResult":
        return cls(operation=operation, ok=False, reason=reason, message=message)


def _sample_data(sample: Sample) -> dict:
    return {"percent": sample.percent, "on_battery": sample.on_battery, "source": sample.source}


class Watchdog:
    """The battery watchdog process."""

    def __init__(
        self,
        config: Optional[WatchdogConfig] = None,
        channel: Optional[HelperChannel] = None,
        settings_store: Optional[SettingsStore] = None,
        notifier: Optional[Notifier] = None,
        sampler: Optional[BatterySampler] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.config = config or WatchdogConfig()
        self.notifier = notifier or Notifier()
        self.channel = channel or HelperChannel(
            self.config.helper_path,
            command_timeout_seconds=self.config.command_timeout_seconds,
        )
        self.bootstrap_sequencer = BootstrapSequencer(
            self.channel,
            approve_timeout_seconds=self.config.approve_timeout_seconds,
        )
        self.engine = EscalationEngine(
            self.channel,
            self.bootstrap_sequencer,
            alert=self.notifier.notify,
            alert_title=self.config.notification_title,
        )
        self.sampler = sampler or BatterySampler(
            channel=self.channel,
            text_query_command=self.config.text_query_command,
            text_query_timeout_seconds=self.config.text_query_timeout_seconds,
        )
        self.settings_store = settings_store or SettingsStore(self.config.settings_path)
        self._timer_factory = timer_factory or periodic_timer
        self.debouncer = NotificationDebouncer(
            self.sampler,
            self.settings_store.get,
            self.notifier.notify,
            title=self.config.notification_title,
            message=self.config.charge_message,
            timer_factory=self._timer_factory,
        )
        self.supported = False
        self._running = False
        self._poll_timer: Optional[Timer] = None
        self._support_timer: Optional[Timer] = None
        self._startup_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def polling(self) -> bool:
        return self._poll_timer is not None and self._poll_timer.active

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        log.info("watchdog_starting", helper=self.config.helper_path)
        await self._start_polling()
        self._support_timer = self._timer_factory(
            "support-refresh", self.config.support_refresh_seconds, self.refresh_support
        )
        self._support_timer.start()
        await self.refresh_support()
        if self.config.bootstrap_on_start and self.channel.is_available():
            self._startup_task = asyncio.get_running_loop().create_task(
                self._startup_bootstrap(), name="startup-bootstrap"
            )

    def stop(self) -> None:
        self._stop_polling()
        self.debouncer.stop()
        if self._support_timer is not None:
            self._support_timer.stop()
            self._support_timer = None
        if self._startup_task is not None and not self._startup_task.done():
            self._startup_task.cancel()
        self._startup_task = None
        if self._running:
            log.info("watchdog_stopped")
        self._running = False

    async def handle_power_event(self, event: PowerEvent) -> None:
        log.info("power_event", power_event=event.value)
        if event in (PowerEvent.ON_BATTERY, PowerEvent.ON_AC):
            self.debouncer.reset()
            await self._start_polling()
        elif event == PowerEvent.SUSPEND:
            self._stop_polling()
            self.debouncer.stop()
        elif event == PowerEvent.RESUME:
            await self._start_polling()

    async def _start_polling(self) -> None:
        self._stop_polling()
        await self.poll_once()
        self._poll_timer = self._timer_factory(
            "poll", self.config.poll_interval_seconds, self.poll_once
        )
        self._poll_timer.start()

    def _stop_polling(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.stop()
            self._poll_timer = None

    async def poll_once(self) -> None:
        try:
            await self.debouncer.poll_once()
        except Exception as e:
            log.exception("poll_failed", error=str(e))

    async def refresh_support(self) -> bool:
        """Ask the helper IsSupported again; never repairs."""
        try:
            result = await self.channel.send(Command.of(CommandKind.IS_SUPPORTED))
            supported = result.ok
        except Exception as e:
            log.exception("support_refresh_failed", error=str(e))
            supported = False
        if supported != self.supported:
            log.info("helper_support_changed", supported=supported)
        self.supported = supported
        return supported

    async def _startup_bootstrap(self) -> None:
        result = await self.bootstrap()
        if result.ok:
            await self.refresh_support()

    # --- Entry points ---

    async def execute_command(self, name: str) -> OperationResult:
        operation = f"command:{name}"
        try:
            command = Command.parse(name)
        except UnknownCommandError as e:
            return OperationResult.error(operation, "unknown_command", str(e))
        try:
            result = await self.engine.execute(command)
        except Exception as e:
            log.exception("execute_command_failed", command=name)
            return OperationResult.error(operation, "internal_error", str(e))
        return OperationResult.from_command(operation, result)

    async def sample_battery(self) -> OperationResult:
        try:
            sample = await self.sampler.sample()
        except Exception as e:
            log.exception("sample_battery_failed")
            return OperationResult.error("sample", "internal_error", str(e))
        return OperationResult(operation="sample", ok=True, data=_sample_data(sample))

    async def bootstrap(self) -> OperationResult:
        try:
            report = await self.engine.run_bootstrap()
        except Exception as e:
            log.exception("bootstrap_failed")
            return OperationResult.error("bootstrap", "internal_error", str(e))
        failed = [s for s in report.steps if not s.result.ok]
        return OperationResult(
            operation="bootstrap",
            ok=report.succeeded,
            reason=failed[0].result.reason.value if failed else None,
            message=failed[0].result.user_message() if failed else None,
            data=report.summary(),
        )

    async def test_notify(self, threshold: Optional[int]) -> OperationResult:
        """
        Store ``threshold``, sample once, and alert if on battery at or below
        it. Reports whether the alert was sent.
        """
        if threshold is None:
            return OperationResult.error("test_notify", "threshold_required", "test-notify requires a threshold")
        try:
            settings = self.settings_store.update({"threshold_percent": threshold})
            sample = await self.sampler.sample()
            sent = sample.on_battery and sample.percent_known and sample.percent <= settings.threshold_percent
            if sent:
                self.notifier.notify(self.config.notification_title, self.config.charge_message)
        except Exception as e:
            log.exception("test_notify_failed")
            return OperationResult.error("test_notify", "internal_error", str(e))
        log.info("test_notify", sent=sent, threshold=settings.threshold_percent, **_sample_data(sample))
        return OperationResult(
            operation="test_notify",
            ok=True,
            data={"sent": sent, "threshold_percent": settings.threshold_percent, **_sample_data(sample)},
        )

    # --- Settings & status ---

    def get_settings(self) -> Settings:
        return self.settings_store.get()

    def update_settings(self, changes: dict) -> Settings:
        return self.settings_store.update(changes)

    async def get_helper_settings(self) -> OperationResult:
        """The helper's own settings document, passed through unchanged."""
        try:
            result = await self.channel.get_helper_settings()
        except Exception as e:
            log.exception("get_helper_settings_failed")
            return OperationResult.error("helper_settings:get", "internal_error", str(e))
        op = OperationResult.from_command("helper_settings:get", result)
        if result.ok:
            op.data = dict(result.payload.get("settings") or {})
        return op

    async def set_helper_settings(self, settings: dict) -> OperationResult:
        try:
            result = await self.channel.set_helper_settings(settings)
        except Exception as e:
            log.exception("set_helper_settings_failed")
            return OperationResult.error("helper_settings:set", "internal_error", str(e))
        log.info("helper_settings_updated", ok=result.ok, keys=sorted(settings))
        return OperationResult.from_command("helper_settings:set", result)

    def status_title(self) -> str:
        return status_title(self.debouncer.last_sample, self.settings_store.get())

    def status(self) -> dict:
        sample = self.debouncer.last_sample
        state = self.debouncer.state
        return {
            "running": self._running,
            "polling": self.polling,
            "supported": self.supported,
            "authorized": self.engine.authorized,
            "phase": state.phase.value,
            "last_notified": state.last_notified,
            "repeat_timer_active": state.repeat_timer_active,
            "last_sample": _sample_data(sample) if sample is not None else None,
            "title": self.status_title(),
            "bootstrap_in_progress": self.bootstrap_sequencer.in_progress,
        }
