"""
Battery Watchdog API — FastAPI endpoints.

Exposes the watchdog for local control:
- Helper commands (with escalation)
- Battery sampling and status
- Bootstrap of the helper
- User settings and the helper's own settings
- Power events from an external power monitor
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from battery_watchdog.models.command import Command, UnknownCommandError
from battery_watchdog.runtime.watchdog import PowerEvent, Watchdog


# --- Request/Response Models ---

class SettingsUpdateRequest(BaseModel):
    threshold_percent: Optional[int] = None
    notifications_enabled: Optional[bool] = None
    repeat_notifications: Optional[bool] = None
    repeat_interval_sec: Optional[int] = None
    notify_on_ac: Optional[bool] = None
    launch_at_startup: Optional[bool] = None


class NotifyTestRequest(BaseModel):
    threshold: Optional[int] = None


# --- Application Factory ---

def create_app(watchdog: Optional[Watchdog] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Battery Watchdog API",
        description="Low-battery alerts and privileged power control",
        version="0.1.0",
    )

    wd = watchdog or Watchdog()
    app.state.watchdog = wd

    # === COMMANDS ===

    @app.post("/commands/{name}")
    async def execute_command(name: str):
        """Run a helper command, repairing the helper once if needed."""
        try:
            Command.parse(name)
        except UnknownCommandError as e:
            raise HTTPException(404, str(e))
        result = await wd.execute_command(name)
        return result.model_dump(mode="json")

    @app.post("/bootstrap")
    async def bootstrap():
        """Register, start, approve and authorize the helper."""
        result = await wd.bootstrap()
        return result.model_dump(mode="json")

    # === BATTERY ===

    @app.get("/battery")
    async def battery():
        """Take a fresh battery sample."""
        result = await wd.sample_battery()
        return result.model_dump(mode="json")

    @app.get("/status")
    def status():
        """Debounce phase, last sample and helper support."""
        return wd.status()

    # === SETTINGS ===

    @app.get("/settings")
    def get_settings():
        return wd.get_settings().model_dump(mode="json")

    @app.put("/settings")
    def update_settings(req: SettingsUpdateRequest):
        """Partial update; numbers are clamped into range."""
        updated = wd.update_settings(req.model_dump(exclude_none=True))
        return updated.model_dump(mode="json")

    @app.get("/helper/settings")
    async def get_helper_settings():
        """The helper's own settings, read through the helper."""
        result = await wd.get_helper_settings()
        return result.model_dump(mode="json")

    @app.put("/helper/settings")
    async def set_helper_settings(settings: Dict[str, Any]):
        result = await wd.set_helper_settings(settings)
        return result.model_dump(mode="json")

    # === NOTIFICATIONS ===

    @app.post("/notify/test")
    async def test_notify(req: NotifyTestRequest):
        result = await wd.test_notify(req.threshold)
        if result.reason == "threshold_required":
            raise HTTPException(400, result.message)
        return result.model_dump(mode="json")

    # === POWER EVENTS ===

    @app.post("/power-events/{event}")
    async def power_event(event: str):
        try:
            parsed = PowerEvent(event.replace("-", "_"))
        except ValueError:
            raise HTTPException(404, f"Unknown power event: {event}")
        await wd.handle_power_event(parsed)
        return {"event": parsed.value, "status": wd.status()}

    return app
