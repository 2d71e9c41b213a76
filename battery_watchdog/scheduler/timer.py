"""Cancellable periodic timers on the running asyncio loop."""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

import structlog

log = structlog.get_logger()

Tick = Callable[[], Awaitable[None]]


class Timer(Protocol):
    """What the debouncer and watchdog need from a timer."""

    @property
    def active(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


TimerFactory = Callable[[str, float, Tick], Timer]


class PeriodicTimer:
    """
    Calls ``tick`` every ``interval`` seconds until stopped.

    A tick that raises is logged and the timer keeps running. stop() takes
    effect before the next tick; a tick already running is cancelled.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Tick,
        fire_immediately: bool = False,
    ):
        self.name = name
        self.interval = interval
        self._tick = tick
        self._fire_immediately = fire_immediately
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking; a no-op if already running."""
        if self.active:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event), name=f"timer:{self.name}"
        )

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None and not self._task.done():
            if self._task is not asyncio.current_task():
                self._task.cancel()
        self._task = None
        self._stop_event = None

    async def _run(self, stop_event: asyncio.Event) -> None:
        if self._fire_immediately:
            await self._safe_tick()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self._safe_tick()

    async def _safe_tick(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("timer_tick_failed", timer=self.name, error=str(e))


def periodic_timer(name: str, interval: float, tick: Tick) -> PeriodicTimer:
    return PeriodicTimer(name, interval, tick)
