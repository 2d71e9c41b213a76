"""Tests for the FastAPI API endpoints."""

import pytest
from fastapi.testclient import TestClient

from battery_watchdog.api.app import create_app
from battery_watchdog.models.command import CommandKind, CommandResult, FailureReason
from battery_watchdog.models.config import WatchdogConfig
from battery_watchdog.models.sample import Sample
from battery_watchdog.runtime.watchdog import Watchdog
from battery_watchdog.settings_store.store import SettingsStore


class ScriptedChannel:
    def __init__(self, script=None):
        self.script = dict(script or {})
        self.helper_settings = {"chargeLimit": 80}

    def is_available(self):
        return True

    async def send(self, command, auth_token=None):
        return self.script.get(command.kind, CommandResult.success())

    async def query_state(self):
        return CommandResult.failed(FailureReason.COMM_FAILED)

    async def get_helper_settings(self):
        return CommandResult.success({"settings": dict(self.helper_settings)})

    async def set_helper_settings(self, settings):
        self.helper_settings = dict(settings)
        return CommandResult.success()


class FixedSampler:
    def __init__(self, sample):
        self.current = sample

    async def sample(self):
        return self.current


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, title, body):
        self.calls.append((title, body))


class InertTimer:
    def __init__(self, name, interval, tick):
        self.active = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False


@pytest.fixture
def watchdog(tmp_path):
    """Create a watchdog with scripted collaborators."""
    config = WatchdogConfig(
        helper_path="/nonexistent/btctl",
        settings_path=str(tmp_path / "settings.json"),
        bootstrap_on_start=False,
    )
    return Watchdog(
        config,
        channel=ScriptedChannel({CommandKind.DISABLE_CHARGING: CommandResult.daemon_error(3)}),
        settings_store=SettingsStore(config.settings_path),
        notifier=RecordingNotifier(),
        sampler=FixedSampler(Sample(percent=42, on_battery=True, source="os")),
        timer_factory=InertTimer,
    )


@pytest.fixture
def client(watchdog):
    return TestClient(create_app(watchdog))


class TestCommandEndpoints:
    def test_execute_command(self, client):
        response = client.post("/commands/charge_to_full")
        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_failed_command_is_a_result(self, client):
        response = client.post("/commands/disable-charging")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["reason"] == "daemon_error"
        assert data["code"] == 3

    def test_unknown_command(self, client):
        response = client.post("/commands/launch_rockets")
        assert response.status_code == 404

    def test_bootstrap(self, client):
        response = client.post("/bootstrap")
        assert response.status_code == 200
        assert response.json()["data"]["succeeded"] is True


class TestBatteryEndpoints:
    def test_battery(self, client):
        response = client.get("/battery")
        assert response.status_code == 200
        assert response.json()["data"]["percent"] == 42

    def test_status(self, client):
        response = client.get("/status")
        assert response.status_code == 200
        assert response.json()["phase"] == "idle"
        assert response.json()["title"] == "--%"


class TestSettingsEndpoints:
    def test_defaults(self, client):
        response = client.get("/settings")
        assert response.json()["threshold_percent"] == 70

    def test_update_is_partial_and_clamped(self, client):
        response = client.put("/settings", json={"threshold_percent": 150, "repeat_interval_sec": 9999})
        assert response.status_code == 200
        data = response.json()
        assert data["threshold_percent"] == 100
        assert data["repeat_interval_sec"] == 600
        assert data["notify_on_ac"] is True
        assert client.get("/settings").json()["threshold_percent"] == 100


class TestHelperSettingsEndpoints:
    def test_get(self, client):
        response = client.get("/helper/settings")
        assert response.status_code == 200
        assert response.json()["data"] == {"chargeLimit": 80}

    def test_put_replaces_document(self, client, watchdog):
        response = client.put("/helper/settings", json={"chargeLimit": 65, "sailing": False})
        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert watchdog.channel.helper_settings == {"chargeLimit": 65, "sailing": False}
        assert client.get("/helper/settings").json()["data"]["chargeLimit"] == 65

    def test_put_requires_object(self, client):
        response = client.put("/helper/settings", json=[1, 2])
        assert response.status_code == 422


class TestNotifyEndpoints:
    def test_requires_threshold(self, client):
        response = client.post("/notify/test", json={})
        assert response.status_code == 400

    def test_sends_when_low(self, client, watchdog):
        response = client.post("/notify/test", json={"threshold": 50})
        assert response.status_code == 200
        assert response.json()["data"]["sent"] is True
        assert len(watchdog.notifier.calls) == 1


class TestPowerEventEndpoints:
    def test_power_event(self, client, watchdog):
        response = client.post("/power-events/on-battery")
        assert response.status_code == 200
        assert response.json()["event"] == "on_battery"
        assert response.json()["status"]["last_sample"]["percent"] == 42
        assert watchdog.polling

    def test_unknown_power_event(self, client):
        response = client.post("/power-events/meltdown")
        assert response.status_code == 404
