"""Daemon entry: logging setup and the run-until-signalled loop."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import structlog

from battery_watchdog.models.config import WatchdogConfig
from battery_watchdog.runtime.watchdog import Watchdog

log = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        # stdout is reserved for CLI output
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


async def run_daemon(
    config: Optional[WatchdogConfig] = None,
    stop_event: Optional[asyncio.Event] = None,
    watchdog: Optional[Watchdog] = None,
) -> None:
    """Run the watchdog until SIGINT/SIGTERM or ``stop_event`` is set."""
    config = config or WatchdogConfig()
    watchdog = watchdog or Watchdog(config)
    if stop_event is None:
        stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not on the main thread, or no signal support on this platform
            pass

    try:
        await watchdog.start()
        await stop_event.wait()
        log.info("shutdown_requested")
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        watchdog.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
