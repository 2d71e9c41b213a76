"""
Escalation Engine — runs a helper command and repairs the precondition it
was missing.

States:
  DISPATCH → (OK | REPAIR → RETRY → DONE | DONE)

Repair is chosen by failure category, because each category points at a
different missing precondition:
  HELPER_NOT_FOUND (or an unreachable endpoint) → full bootstrap
  NOT_AUTHORIZED                                → re-authorize
  installation defects                          → register only
  everything else                               → no repair

Behavioral Contract:
- An OK result never triggers repair
- At most one repair and one retry per execution; the retry's result is final
- One execution per command in flight; a duplicate request joins it, and a
  cancelled caller stops waiting without cancelling the shared execution
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel

from battery_watchdog.escalation.bootstrap import BootstrapReport, BootstrapSequencer
from battery_watchdog.helper.channel import HelperChannel
from battery_watchdog.models.command import (
    INSTALLATION_DEFECTS,
    Command,
    CommandKind,
    CommandResult,
    FailureReason,
)

log = structlog.get_logger()

Alert = Callable[[str, str], None]


class RepairAction:
    BOOTSTRAP = "bootstrap"
    AUTHORIZE = "authorize"
    REGISTER = "register"


class ExecutionTrace(BaseModel):
    """What one execute() did, for status and diagnostics."""

    command: str
    first_result: CommandResult
    repair: Optional[str] = None
    final_result: CommandResult

    @property
    def retried(self) -> bool:
        return self.repair is not None


class EscalationEngine:
    """Generic command executor with one-shot repair-and-retry."""

    def __init__(
        self,
        channel: HelperChannel,
        bootstrap: BootstrapSequencer,
        alert: Optional[Alert] = None,
        alert_title: str = "Battery Monitor",
    ):
        self.channel = channel
        self.bootstrap = bootstrap
        self._alert = alert
        self._alert_title = alert_title
        self._auth_token: Optional[str] = None
        self._in_flight: Dict[Command, asyncio.Task] = {}
        self._history: List[ExecutionTrace] = []
        self._repairs: Dict[str, Callable[[], Awaitable[bool]]] = {}
        self._register_default_repairs()

    def _register_default_repairs(self) -> None:
        self._repairs[RepairAction.BOOTSTRAP] = self._repair_bootstrap
        self._repairs[RepairAction.AUTHORIZE] = self._repair_authorize
        self._repairs[RepairAction.REGISTER] = self._repair_register

    @property
    def history(self) -> List[ExecutionTrace]:
        return list(self._history)

    def in_flight(self, command: Command) -> bool:
        return command in self._in_flight

    async def execute(self, command: Command) -> CommandResult:
        """
        Execute ``command``, repairing and retrying once where the failure
        category calls for it.
        """
        task = self._in_flight.get(command)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._execute_guarded(command), name=f"execute:{command}"
            )
            self._in_flight[command] = task
            task.add_done_callback(lambda done, c=command: self._forget(c, done))
        else:
            log.info("command_joined_in_flight", command=str(command))
        # The execution belongs to the engine; a cancelled caller only stops waiting
        return await asyncio.shield(task)

    def _forget(self, command: Command, task: asyncio.Task) -> None:
        if self._in_flight.get(command) is task:
            del self._in_flight[command]

    async def _execute_guarded(self, command: Command) -> CommandResult:
        try:
            return await self._execute(command)
        except Exception as e:
            log.exception("command_crashed", command=str(command))
            return CommandResult.failed(FailureReason.COMM_FAILED, detail=str(e))

    async def _execute(self, command: Command) -> CommandResult:
        first = await self._dispatch(command)
        if first.ok:
            self._record(command, first, None, first)
            return first

        repair = await self._choose_repair(command, first)
        if repair is None:
            log.warning(
                "command_failed",
                command=str(command),
                reason=first.reason.value,
                code=first.code,
            )
            self._record(command, first, None, first)
            self._surface(first)
            return first

        log.info("command_repairing", command=str(command), reason=first.reason.value, repair=repair)
        await self._repairs[repair]()
        final = await self._dispatch(command)
        self._record(command, first, repair, final)

        if final.ok:
            log.info("command_recovered", command=str(command), repair=repair)
        else:
            log.warning(
                "command_failed_after_repair",
                command=str(command),
                repair=repair,
                reason=final.reason.value,
                code=final.code,
            )
            self._surface(final)
        return final

    async def _choose_repair(self, command: Command, result: CommandResult) -> Optional[str]:
        reason = result.reason
        if reason == FailureReason.HELPER_NOT_FOUND:
            return RepairAction.BOOTSTRAP
        if reason == FailureReason.NOT_AUTHORIZED:
            return RepairAction.AUTHORIZE
        if reason in INSTALLATION_DEFECTS:
            return RepairAction.REGISTER
        if reason == FailureReason.COMM_FAILED and not await self._endpoint_reachable(command):
            return RepairAction.BOOTSTRAP
        return None

    async def _endpoint_reachable(self, command: Command) -> bool:
        """Ask IsSupported; a transport failure means nobody is listening."""
        if command.kind == CommandKind.IS_SUPPORTED:
            return False
        check = await self.channel.send(Command.of(CommandKind.IS_SUPPORTED))
        reachable = check.reason not in (FailureReason.HELPER_NOT_FOUND, FailureReason.COMM_FAILED)
        log.info("endpoint_checked", command=str(command), reachable=reachable)
        return reachable

    async def _dispatch(self, command: Command) -> CommandResult:
        token = self._auth_token if command.requires_auth else None
        return await self.channel.send(command, auth_token=token)

    async def run_bootstrap(self) -> BootstrapReport:
        """Full bootstrap outside of a failed command; keeps any token it obtains."""
        report = await self.bootstrap.full_bootstrap()
        if report.auth_token:
            self._auth_token = report.auth_token
        return report

    @property
    def authorized(self) -> bool:
        return self._auth_token is not None

    # --- Repairs ---

    async def _repair_bootstrap(self) -> bool:
        report = await self.run_bootstrap()
        return report.succeeded

    async def _repair_authorize(self) -> bool:
        result = await self.bootstrap.authorize()
        if result.ok:
            token = result.payload.get("token")
            if token:
                self._auth_token = str(token)
        return result.ok

    async def _repair_register(self) -> bool:
        result = await self.bootstrap.register()
        return result.ok

    # --- Reporting ---

    def _record(
        self,
        command: Command,
        first: CommandResult,
        repair: Optional[str],
        final: CommandResult,
    ) -> None:
        self._history.append(ExecutionTrace(
            command=str(command),
            first_result=first,
            repair=repair,
            final_result=final,
        ))
        del self._history[:-50]

    def _surface(self, result: CommandResult) -> None:
        if self._alert is None:
            return
        try:
            self._alert(self._alert_title, result.user_message())
        except Exception:
            log.exception("failure_alert_crashed")
