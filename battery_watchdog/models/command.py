"""Helper commands and their normalized results."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, model_validator


class CommandKind(str, Enum):
    DISABLE_POWER_ADAPTER = "disable_power_adapter"
    ENABLE_POWER_ADAPTER = "enable_power_adapter"
    CHARGE_TO_LIMIT = "charge_to_limit"
    CHARGE_TO_FULL = "charge_to_full"
    DISABLE_CHARGING = "disable_charging"
    PAUSE_ACTIVITY = "pause_activity"
    RESUME_ACTIVITY = "resume_activity"
    IS_SUPPORTED = "is_supported"
    AUTHORIZE = "authorize"
    REGISTER = "register"
    START = "start"
    APPROVE = "approve"


# Power-state changes the helper refuses without a manage-level token
AUTH_REQUIRED = frozenset({
    CommandKind.DISABLE_POWER_ADAPTER,
    CommandKind.DISABLE_CHARGING,
    CommandKind.PAUSE_ACTIVITY,
    CommandKind.RESUME_ACTIVITY,
})

# Helper executable verbs
HELPER_VERBS = {
    CommandKind.DISABLE_POWER_ADAPTER: "disable-power",
    CommandKind.ENABLE_POWER_ADAPTER: "enable-power",
    CommandKind.CHARGE_TO_LIMIT: "charge-limit",
    CommandKind.CHARGE_TO_FULL: "charge-full",
    CommandKind.DISABLE_CHARGING: "disable-charging",
    CommandKind.PAUSE_ACTIVITY: "pause",
    CommandKind.RESUME_ACTIVITY: "resume",
    CommandKind.IS_SUPPORTED: "is-supported",
    CommandKind.AUTHORIZE: "authorize-manage",
    CommandKind.REGISTER: "register-daemon",
    CommandKind.START: "start",
    CommandKind.APPROVE: "approve",
}

DEFAULT_APPROVE_TIMEOUT_SECONDS = 20


class UnknownCommandError(ValueError):
    """Raised when a command name does not match any helper command."""
    pass


class Command(BaseModel, frozen=True):
    """One discrete request for the privileged helper."""

    kind: CommandKind
    timeout_seconds: Optional[int] = None  # Approve only

    @model_validator(mode="before")
    @classmethod
    def _default_approve_timeout(cls, data):
        if isinstance(data, dict) and data.get("timeout_seconds") is None:
            if data.get("kind") in (CommandKind.APPROVE, CommandKind.APPROVE.value):
                data = {**data, "timeout_seconds": DEFAULT_APPROVE_TIMEOUT_SECONDS}
        return data

    @model_validator(mode="after")
    def _only_approve_has_timeout(self) -> "Command":
        if self.kind != CommandKind.APPROVE and self.timeout_seconds is not None:
            raise ValueError("only approve carries a timeout")
        return self

    @classmethod
    def of(cls, kind: CommandKind) -> "Command":
        return cls(kind=kind)

    @classmethod
    def approve(cls, timeout_seconds: int = DEFAULT_APPROVE_TIMEOUT_SECONDS) -> "Command":
        return cls(kind=CommandKind.APPROVE, timeout_seconds=timeout_seconds)

    @classmethod
    def parse(cls, name: str) -> "Command":
        """Resolve a user-facing name ("disable_power_adapter", "disable-power", ...)."""
        key = name.strip().lower().replace("-", "_")
        for kind in CommandKind:
            if key == kind.value or key == HELPER_VERBS[kind].replace("-", "_"):
                return cls(kind=kind)
        raise UnknownCommandError(f"Unknown command: {name!r}")

    @property
    def requires_auth(self) -> bool:
        return self.kind in AUTH_REQUIRED

    @property
    def verb(self) -> str:
        return HELPER_VERBS[self.kind]

    def helper_args(self) -> list:
        """Arguments after the executable path, excluding any auth token."""
        if self.kind == CommandKind.APPROVE:
            return [self.verb, str(self.timeout_seconds)]
        return [self.verb]

    def __str__(self) -> str:
        if self.kind == CommandKind.APPROVE:
            return f"approve({self.timeout_seconds}s)"
        return self.kind.value


class FailureCategory(str, Enum):
    TRANSPORT = "transport"
    AUTHORIZATION = "authorization"
    INSTALLATION = "installation"
    REMOTE = "remote"


class FailureReason(str, Enum):
    NOT_AUTHORIZED = "not_authorized"
    COMM_FAILED = "comm_failed"
    HELPER_NOT_FOUND = "helper_not_found"
    ENABLE_FAILED = "enable_failed"
    MISSING_PLIST = "missing_plist"
    NOT_IN_APP_BUNDLE = "not_in_app_bundle"
    UNSUPPORTED_OS = "unsupported_os"
    TIMEOUT = "timeout"
    DAEMON_ERROR = "daemon_error"

    @property
    def category(self) -> FailureCategory:
        return _CATEGORIES[self]


_CATEGORIES = {
    FailureReason.HELPER_NOT_FOUND: FailureCategory.TRANSPORT,
    FailureReason.COMM_FAILED: FailureCategory.TRANSPORT,
    FailureReason.TIMEOUT: FailureCategory.TRANSPORT,
    FailureReason.NOT_AUTHORIZED: FailureCategory.AUTHORIZATION,
    FailureReason.ENABLE_FAILED: FailureCategory.INSTALLATION,
    FailureReason.MISSING_PLIST: FailureCategory.INSTALLATION,
    FailureReason.NOT_IN_APP_BUNDLE: FailureCategory.INSTALLATION,
    FailureReason.UNSUPPORTED_OS: FailureCategory.INSTALLATION,
    FailureReason.DAEMON_ERROR: FailureCategory.REMOTE,
}

INSTALLATION_DEFECTS = frozenset(
    reason for reason, category in _CATEGORIES.items()
    if category == FailureCategory.INSTALLATION
)

CATEGORY_MESSAGES = {
    FailureCategory.TRANSPORT: (
        "Native service bridge unavailable. Install or build the helper."
    ),
    FailureCategory.AUTHORIZATION: (
        "Authorization required. Approve Battery Monitor when prompted, "
        "or in System Settings > Login Items."
    ),
    FailureCategory.INSTALLATION: (
        "Background service not installed or app not packaged. Install the "
        "app, then launch the background service."
    ),
    FailureCategory.REMOTE: "The background service refused the request.",
}


class CommandResult(BaseModel, frozen=True):
    """
    Tagged result of one helper command.

    ``ok=True`` carries an optional payload; ``ok=False`` always carries a
    ``reason`` and, for DAEMON_ERROR, the helper's own ``code``.
    """

    ok: bool
    reason: Optional[FailureReason] = None
    code: Optional[int] = None
    payload: dict = {}
    detail: Optional[str] = None  # Human-readable context, never used for decisions

    @model_validator(mode="after")
    def _check_tag(self) -> "CommandResult":
        if self.ok and self.reason is not None:
            raise ValueError("successful result cannot carry a failure reason")
        if not self.ok and self.reason is None:
            raise ValueError("failed result requires a reason")
        if self.reason == FailureReason.DAEMON_ERROR and self.code is None:
            raise ValueError("daemon_error requires the helper's code")
        return self

    @classmethod
    def success(cls, payload: Optional[dict] = None) -> "CommandResult":
        return cls(ok=True, payload=payload or {})

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        code: Optional[int] = None,
        detail: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> "CommandResult":
        return cls(ok=False, reason=reason, code=code, detail=detail, payload=payload or {})

    @classmethod
    def daemon_error(cls, code: int) -> "CommandResult":
        return cls(ok=False, reason=FailureReason.DAEMON_ERROR, code=code)

    @property
    def category(self) -> Optional[FailureCategory]:
        return self.reason.category if self.reason else None

    def user_message(self) -> Optional[str]:
        """Category-level message for the user; raw codes never leak."""
        if self.ok:
            return None
        return CATEGORY_MESSAGES[self.category]
