"""
Battery Sampler — current charge level and power source, from whichever
source answers first.

Source priority:
  1. The privileged helper's state query (only when the helper is present)
  2. The OS power-status API (psutil)
  3. A text utility (``pmset -g batt`` by default), parsed by pattern

A source that errors is skipped. When nothing answers the sample is
``percent=None, on_battery=False``. sample() never raises.
"""

import asyncio
import re
import shutil
from typing import Awaitable, Callable, List, Optional, Tuple

import psutil
import structlog

from battery_watchdog.helper.channel import HelperChannel
from battery_watchdog.helper.transport import run_process
from battery_watchdog.models.sample import Sample

log = structlog.get_logger()

_PERCENT_RE = re.compile(r"(\d{1,3})%")
_BATTERY_POWER_RE = re.compile(r"battery power", re.IGNORECASE)

Source = Callable[[], Awaitable[Optional[Sample]]]


def parse_power_text(text: str) -> Sample:
    """
    Parse text-utility output such as
    ``Now drawing from 'Battery Power' -InternalBattery-0 83%; discharging``.
    """
    match = _PERCENT_RE.search(text)
    percent = int(match.group(1)) if match else None
    on_battery = bool(_BATTERY_POWER_RE.search(text))
    return Sample(percent=percent, on_battery=on_battery, source="text")


class BatterySampler:
    """Produces normalized Samples from the first available source."""

    def __init__(
        self,
        channel: Optional[HelperChannel] = None,
        text_query_command: Optional[List[str]] = None,
        text_query_timeout_seconds: float = 5.0,
        battery_reader: Optional[Callable] = None,
    ):
        self.channel = channel
        self.text_query_command = list(text_query_command or ["pmset", "-g", "batt"])
        self.text_query_timeout_seconds = text_query_timeout_seconds
        self._battery_reader = battery_reader or getattr(psutil, "sensors_battery", None)
        self._sources: List[Tuple[str, Source]] = []
        self._register_default_sources()

    def _register_default_sources(self) -> None:
        self._sources.append(("helper", self._from_helper))
        self._sources.append(("os", self._from_os))
        self._sources.append(("text", self._from_text))

    async def sample(self) -> Sample:
        """Return the first sample any source produces."""
        for name, source in self._sources:
            try:
                sample = await source()
            except Exception as e:
                log.warning("battery_source_failed", source=name, error=str(e))
                continue
            if sample is not None:
                return sample
        log.warning("battery_sample_unavailable")
        return Sample.unknown()

    async def _from_helper(self) -> Optional[Sample]:
        if self.channel is None or not self.channel.is_available():
            return None
        result = await self.channel.query_state()
        if not result.ok:
            log.info("helper_state_unavailable", reason=result.reason.value)
            return None
        state = result.payload
        return Sample(
            percent=state.get("percent"),
            on_battery=bool(state.get("onBattery", state.get("on_battery", False))),
            source="helper",
        )

    async def _from_os(self) -> Optional[Sample]:
        if self._battery_reader is None:
            return None
        battery = self._battery_reader()
        if battery is None:
            return None
        sample = Sample(
            percent=battery.percent,
            on_battery=battery.power_plugged is False,
            source="os",
        )
        # Without a level the OS reading is no better than the text utility
        return sample if sample.percent_known else None

    async def _from_text(self) -> Optional[Sample]:
        if not self.text_query_command or shutil.which(self.text_query_command[0]) is None:
            return None
        try:
            stdout, _ = await run_process(self.text_query_command, self.text_query_timeout_seconds)
        except asyncio.TimeoutError:
            log.warning("text_query_timeout", command=self.text_query_command[0])
            return None
        if not stdout.strip():
            return None
        return parse_power_text(stdout)
