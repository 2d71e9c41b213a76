"""
Desktop notifications — best effort, silently a no-op when unsupported.

notify() only spawns the notification process; a reaper thread waits for it
(killing it after the timeout), so callers on the event loop never block.
"""

import shutil
import subprocess
import sys
import threading
from typing import List, Optional

import structlog

log = structlog.get_logger()


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class Notifier:
    """Shows a notification via osascript (macOS) or notify-send (Linux)."""

    def __init__(self, platform: Optional[str] = None, timeout_seconds: float = 5.0):
        self.platform = platform or sys.platform
        self.timeout_seconds = timeout_seconds

    def _command(self, title: str, body: str) -> Optional[List[str]]:
        if self.platform == "darwin" and shutil.which("osascript"):
            script = f"display notification {_applescript_quote(body)} with title {_applescript_quote(title)}"
            return ["osascript", "-e", script]
        if shutil.which("notify-send"):
            return ["notify-send", "-u", "normal", "-i", "battery-low", title, body]
        return None

    @property
    def supported(self) -> bool:
        return self._command("", "") is not None

    def notify(self, title: str, body: str) -> None:
        """Show one notification without waiting for it. Never raises."""
        command = self._command(title, body)
        if command is None:
            log.debug("notification_unsupported", title=title)
            return
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (subprocess.SubprocessError, OSError) as e:
            log.error("notification_failed", error=str(e))
            return
        threading.Thread(target=self._reap, args=(proc,), name="notify-reaper", daemon=True).start()
        log.info("notification_shown", title=title, body=body)

    def _reap(self, proc: subprocess.Popen) -> None:
        try:
            proc.wait(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            log.warning("notification_timeout", command=proc.args[0])
