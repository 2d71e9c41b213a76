"""Tests for desktop notifications."""

import asyncio
import os
import sys

import pytest

from battery_watchdog.notifications import notifier as notifier_module
from battery_watchdog.notifications.notifier import Notifier


def _which(available):
    return lambda name: f"/usr/bin/{name}" if name in available else None


class FakePopen:
    """Records spawned commands; the process 'exits' immediately."""

    spawned = []

    def __init__(self, args, **kwargs):
        self.args = args
        FakePopen.spawned.append(args)

    def wait(self, timeout=None):
        return 0

    def kill(self):
        pass


@pytest.fixture
def spawned(monkeypatch):
    FakePopen.spawned = []
    monkeypatch.setattr(notifier_module.subprocess, "Popen", FakePopen)
    return FakePopen.spawned


class TestNotifier:
    def test_noop_when_unsupported(self, monkeypatch, spawned):
        monkeypatch.setattr(notifier_module.shutil, "which", _which(set()))
        n = Notifier(platform="linux")
        assert not n.supported
        n.notify("Battery Monitor", "Please charge your device")
        assert spawned == []

    def test_notify_send(self, monkeypatch, spawned):
        monkeypatch.setattr(notifier_module.shutil, "which", _which({"notify-send"}))
        Notifier(platform="linux").notify("Battery Monitor", "Please charge your device")
        assert spawned[0][0] == "notify-send"
        assert spawned[0][-2:] == ["Battery Monitor", "Please charge your device"]

    def test_osascript_on_macos(self, monkeypatch, spawned):
        monkeypatch.setattr(notifier_module.shutil, "which", _which({"osascript"}))
        Notifier(platform="darwin").notify("Battery Monitor", 'Say "hi"')
        assert spawned[0][:2] == ["osascript", "-e"]
        assert 'with title "Battery Monitor"' in spawned[0][2]
        assert '\\"hi\\"' in spawned[0][2]

    def test_spawn_failure_is_swallowed(self, monkeypatch):
        monkeypatch.setattr(notifier_module.shutil, "which", _which({"notify-send"}))

        def broken(args, **kwargs):
            raise OSError("exec format error")

        monkeypatch.setattr(notifier_module.subprocess, "Popen", broken)
        Notifier(platform="linux").notify("Battery Monitor", "Please charge your device")

    @pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script")
    async def test_slow_notifier_does_not_stall_the_loop(self, tmp_path, monkeypatch):
        script = tmp_path / "notify-send"
        script.write_text("#!/bin/sh\nsleep 2\n")
        script.chmod(0o755)
        monkeypatch.setenv("PATH", f"{tmp_path}{os.pathsep}{os.environ.get('PATH', '')}")

        loop = asyncio.get_running_loop()
        gaps = []

        async def heartbeat():
            last = loop.time()
            for _ in range(6):
                await asyncio.sleep(0.05)
                now = loop.time()
                gaps.append(now - last)
                last = now

        beat = asyncio.ensure_future(heartbeat())
        await asyncio.sleep(0)
        Notifier(platform="linux").notify("Battery Monitor", "Please charge your device")
        await beat
        assert max(gaps) < 0.5

    def test_reaper_kills_hung_process(self):
        class HungProcess:
            args = ["notify-send"]

            def __init__(self):
                self.killed = False

            def wait(self, timeout=None):
                if timeout is not None and not self.killed:
                    raise notifier_module.subprocess.TimeoutExpired(self.args, timeout)
                return -9

            def kill(self):
                self.killed = True

        proc = HungProcess()
        Notifier(platform="linux", timeout_seconds=0.01)._reap(proc)
        assert proc.killed
