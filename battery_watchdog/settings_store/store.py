"""
Settings Store — persists user Settings as a JSON document.

Behavioral Contract:
- get() never raises: a missing or unreadable file yields defaults
- update() applies known keys only, clamps, persists, returns the new snapshot
- Callers always receive an immutable Settings snapshot
"""

import json
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from battery_watchdog.models.settings import Settings

log = structlog.get_logger()


class SettingsStore:
    """JSON-file backed settings with an in-memory snapshot."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path is not None else None
        self._snapshot: Optional[Settings] = None

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def get(self) -> Settings:
        if self._snapshot is None:
            self._snapshot = self._load()
        return self._snapshot

    def update(self, changes: dict) -> Settings:
        """Merge ``changes`` into the current settings and persist the result."""
        updated = self.get().merged(changes)
        self._snapshot = updated
        self._persist(updated)
        log.info("settings_updated", **{k: v for k, v in changes.items() if v is not None})
        return updated

    def _load(self) -> Settings:
        if self._path is None or not self._path.exists():
            return Settings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings file is not a JSON object")
            return Settings().merged(data)
        except (OSError, ValueError, ValidationError) as e:
            log.error("settings_load_failed", path=str(self._path), error=str(e))
            return Settings()

    def _persist(self, settings: Settings) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(settings.model_dump(), indent=2, sort_keys=True),
                encoding="utf-8",
            )
        except OSError as e:
            log.error("settings_persist_failed", path=str(self._path), error=str(e))
