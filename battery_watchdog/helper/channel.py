"""
Helper Channel — sends one command to the privileged helper.

Behavioral Contract:
- Returns a normalized CommandResult; never raises for transport problems
- A missing helper executable is HELPER_NOT_FOUND, with no call attempted
- Every call is bounded by a timeout (approve waits its own timeout + 5s)
- Knows nothing about retries or repair
"""

import asyncio
import json
import os
import shutil
from typing import Optional

import structlog

from battery_watchdog.helper.transport import HelperTransport, SubprocessTransport, TransportError
from battery_watchdog.models.command import Command, CommandKind, CommandResult, FailureReason

log = structlog.get_logger()

# Channel-local status codes; positive codes belong to the helper
CODE_SUCCESS = 0
CODE_COMM_FAILED = -1
CODE_TIMEOUT = -2

APPROVE_GRACE_SECONDS = 5.0

# Stands in for the helper's code when it reports daemon_error without one
CODE_DAEMON_UNSPECIFIED = 255

# Wire error tags, normalized once here and never compared again
_ERROR_TAGS = {
    "not_authorized": FailureReason.NOT_AUTHORIZED,
    "authorization_required": FailureReason.NOT_AUTHORIZED,
    "comm_failed": FailureReason.COMM_FAILED,
    "btctl_not_found": FailureReason.HELPER_NOT_FOUND,
    "helper_not_found": FailureReason.HELPER_NOT_FOUND,
    "enable_failed": FailureReason.ENABLE_FAILED,
    "missing_plist": FailureReason.MISSING_PLIST,
    "not_in_app_bundle": FailureReason.NOT_IN_APP_BUNDLE,
    "unsupported_os": FailureReason.UNSUPPORTED_OS,
    "timeout": FailureReason.TIMEOUT,
}

_ENVELOPE_KEYS = ("ok", "error", "code", "message")


def result_from_code(code: int) -> CommandResult:
    """Map a raw status byte/integer onto a CommandResult."""
    if code == CODE_SUCCESS:
        return CommandResult.success()
    if code == CODE_COMM_FAILED:
        return CommandResult.failed(FailureReason.COMM_FAILED)
    if code == CODE_TIMEOUT:
        return CommandResult.failed(FailureReason.TIMEOUT)
    if code > 0:
        return CommandResult.daemon_error(code)
    return CommandResult.failed(FailureReason.COMM_FAILED, detail=f"unexpected code {code}")


def normalize_reply(reply: dict) -> CommandResult:
    """Turn a decoded helper reply into a CommandResult."""
    payload = {k: v for k, v in reply.items() if k not in _ENVELOPE_KEYS}
    detail = reply.get("message")
    error = reply.get("error")
    code = reply.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        code = None

    if reply.get("ok") is True and not error:
        if code is not None and code != CODE_SUCCESS:
            return result_from_code(code)
        return CommandResult.success(payload)

    if error == "daemon_error":
        return CommandResult.failed(
            FailureReason.DAEMON_ERROR,
            code=code if code is not None and code > 0 else CODE_DAEMON_UNSPECIFIED,
            detail=detail,
            payload=payload,
        )

    if isinstance(error, str) and error in _ERROR_TAGS:
        return CommandResult.failed(_ERROR_TAGS[error], detail=detail, payload=payload)

    if code is not None:
        result = result_from_code(code)
        if not result.ok:
            return result

    return CommandResult.failed(
        FailureReason.COMM_FAILED,
        detail=detail or (f"unrecognized helper error: {error}" if error else "helper reported failure"),
        payload=payload,
    )


class HelperChannel:
    """Dispatches commands to the helper executable."""

    def __init__(
        self,
        helper_path: str,
        transport: Optional[HelperTransport] = None,
        command_timeout_seconds: float = 5.0,
    ):
        self.helper_path = helper_path
        self.command_timeout_seconds = command_timeout_seconds
        self._transport = transport or SubprocessTransport()

    def is_available(self) -> bool:
        """True when the helper executable exists and is executable."""
        if os.sep in self.helper_path:
            return os.path.isfile(self.helper_path) and os.access(self.helper_path, os.X_OK)
        return shutil.which(self.helper_path) is not None

    def timeout_for(self, command: Command) -> float:
        if command.kind == CommandKind.APPROVE:
            return command.timeout_seconds + APPROVE_GRACE_SECONDS
        return self.command_timeout_seconds

    async def send(self, command: Command, auth_token: Optional[str] = None) -> CommandResult:
        """Send one command and return its normalized result."""
        argv = [self.helper_path, *command.helper_args()]
        if auth_token:
            argv += ["--auth", auth_token]
        result = await self._request(argv, self.timeout_for(command))
        if result.ok:
            log.debug("helper_command_ok", command=str(command))
        else:
            log.info(
                "helper_command_failed",
                command=str(command),
                reason=result.reason.value,
                code=result.code,
            )
        return result

    async def query_state(self) -> CommandResult:
        """Ask the helper for ``{onBattery, percent}``."""
        return await self._request([self.helper_path, "state"], self.command_timeout_seconds)

    async def get_helper_settings(self) -> CommandResult:
        """Read the helper's own settings; ``payload["settings"]`` is always a dict on success."""
        result = await self._request([self.helper_path, "get-settings"], self.command_timeout_seconds)
        if result.ok and not isinstance(result.payload.get("settings"), dict):
            return CommandResult.success({"settings": {}})
        return result

    async def set_helper_settings(self, settings: dict) -> CommandResult:
        """Replace the helper's settings document with ``settings``."""
        argv = [self.helper_path, "set-settings", json.dumps(settings, sort_keys=True)]
        return await self._request(argv, self.command_timeout_seconds)

    async def _request(self, argv: list, timeout: float) -> CommandResult:
        if not self.is_available():
            return CommandResult.failed(
                FailureReason.HELPER_NOT_FOUND,
                detail=f"helper executable not found: {self.helper_path}",
            )
        try:
            reply = await self._transport.request(argv, timeout)
        except asyncio.TimeoutError:
            return CommandResult.failed(FailureReason.TIMEOUT, detail=f"no reply within {timeout:g}s")
        except FileNotFoundError as e:
            return CommandResult.failed(FailureReason.HELPER_NOT_FOUND, detail=str(e))
        except (TransportError, OSError) as e:
            return CommandResult.failed(FailureReason.COMM_FAILED, detail=str(e))
        return normalize_reply(reply)
