"""
Bootstrap Sequencer — brings a missing or unapproved helper to a working state.

The full sequence is register → start → approve (only if start reports that
approval is required) → authorize. It is best-effort: every step runs even
when an earlier one failed, because any single step succeeding may be enough
for the retried command to go through.
"""

import asyncio
from typing import List, Optional

import structlog
from pydantic import BaseModel

from battery_watchdog.helper.channel import HelperChannel
from battery_watchdog.models.command import (
    DEFAULT_APPROVE_TIMEOUT_SECONDS,
    Command,
    CommandKind,
    CommandResult,
    FailureReason,
)

log = structlog.get_logger()


class BootstrapStep(BaseModel):
    """Outcome of one step of the bootstrap sequence."""

    step: str
    result: CommandResult


class BootstrapReport(BaseModel):
    """Everything the full bootstrap attempted and what it obtained."""

    steps: List[BootstrapStep] = []
    auth_token: Optional[str] = None
    requires_approval: bool = False

    @property
    def authorized(self) -> bool:
        return any(s.step == "authorize" and s.result.ok for s in self.steps)

    @property
    def succeeded(self) -> bool:
        return bool(self.steps) and all(s.result.ok for s in self.steps)

    def summary(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "requires_approval": self.requires_approval,
            "authorized": self.authorized,
            "steps": [
                {
                    "step": s.step,
                    "ok": s.result.ok,
                    "reason": s.result.reason.value if s.result.reason else None,
                }
                for s in self.steps
            ],
        }


def _requires_approval(result: CommandResult) -> bool:
    flag = result.payload.get("requiresApproval", result.payload.get("requires_approval"))
    return bool(flag)


class BootstrapSequencer:
    """Runs the repair steps against a HelperChannel."""

    def __init__(
        self,
        channel: HelperChannel,
        approve_timeout_seconds: int = DEFAULT_APPROVE_TIMEOUT_SECONDS,
    ):
        self.channel = channel
        self.approve_timeout_seconds = approve_timeout_seconds
        self._lock = asyncio.Lock()
        self.last_report: Optional[BootstrapReport] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def register(self) -> CommandResult:
        """Install/enable the helper; installation defects come back verbatim."""
        return await self._step(Command.of(CommandKind.REGISTER))

    async def start(self) -> CommandResult:
        """Idempotently activate the helper."""
        return await self._step(Command.of(CommandKind.START))

    async def approve(self, timeout_seconds: Optional[int] = None) -> CommandResult:
        """Wait up to ``timeout_seconds`` for user/OS approval of the helper."""
        return await self._step(Command.approve(timeout_seconds or self.approve_timeout_seconds))

    async def authorize(self) -> CommandResult:
        """
        Acquire a fresh authorization token. May prompt the user.

        On success the token (if the helper returns one) is in
        ``result.payload["token"]``. Any failure is reported as NOT_AUTHORIZED
        unless the helper could not be reached at all.
        """
        result = await self._step(Command.of(CommandKind.AUTHORIZE))
        if result.ok or result.reason in (FailureReason.HELPER_NOT_FOUND, FailureReason.TIMEOUT):
            return result
        return CommandResult.failed(FailureReason.NOT_AUTHORIZED, detail=result.detail)

    async def full_bootstrap(self) -> BootstrapReport:
        """Run register → start → approve-if-required → authorize, one at a time."""
        async with self._lock:
            report = BootstrapReport()

            report.steps.append(BootstrapStep(step="register", result=await self.register()))

            started = await self.start()
            report.steps.append(BootstrapStep(step="start", result=started))
            report.requires_approval = started.ok and _requires_approval(started)

            if report.requires_approval:
                approved = await self.approve()
                report.steps.append(BootstrapStep(step="approve", result=approved))

            authorized = await self.authorize()
            report.steps.append(BootstrapStep(step="authorize", result=authorized))
            if authorized.ok:
                token = authorized.payload.get("token")
                report.auth_token = str(token) if token else None

            self.last_report = report
            log.info("bootstrap_finished", **report.summary())
            return report

    async def _step(self, command: Command) -> CommandResult:
        try:
            result = await self.channel.send(command)
        except Exception as e:
            log.exception("bootstrap_step_crashed", command=str(command))
            result = CommandResult.failed(FailureReason.COMM_FAILED, detail=str(e))
        log.info(
            "bootstrap_step",
            command=str(command),
            ok=result.ok,
            reason=result.reason.value if result.reason else None,
        )
        return result
