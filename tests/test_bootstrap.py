"""Tests for the Bootstrap Sequencer."""

from battery_watchdog.escalation.bootstrap import BootstrapSequencer
from battery_watchdog.models.command import CommandKind, CommandResult, FailureReason


class ScriptedChannel:
    def __init__(self, script=None):
        self.script = dict(script or {})
        self.sent = []

    def is_available(self):
        return True

    async def send(self, command, auth_token=None):
        self.sent.append(command)
        return self.script.get(command.kind, CommandResult.success())


class TestBootstrapSequencer:
    async def test_full_sequence_without_approval(self):
        channel = ScriptedChannel({CommandKind.AUTHORIZE: CommandResult.success({"token": "abc"})})
        report = await BootstrapSequencer(channel).full_bootstrap()
        assert [c.kind for c in channel.sent] == [
            CommandKind.REGISTER,
            CommandKind.START,
            CommandKind.AUTHORIZE,
        ]
        assert report.succeeded
        assert report.authorized
        assert report.auth_token == "abc"
        assert not report.requires_approval

    async def test_approval_when_start_asks_for_it(self):
        channel = ScriptedChannel({CommandKind.START: CommandResult.success({"requiresApproval": True})})
        report = await BootstrapSequencer(channel).full_bootstrap()
        approve = channel.sent[2]
        assert approve.kind == CommandKind.APPROVE
        assert approve.timeout_seconds == 20
        assert report.requires_approval
        assert [s.step for s in report.steps] == ["register", "start", "approve", "authorize"]

    async def test_every_step_runs_after_failures(self):
        channel = ScriptedChannel({
            CommandKind.REGISTER: CommandResult.failed(FailureReason.ENABLE_FAILED),
            CommandKind.START: CommandResult.failed(FailureReason.COMM_FAILED),
        })
        sequencer = BootstrapSequencer(channel)
        report = await sequencer.full_bootstrap()
        assert [c.kind for c in channel.sent] == [
            CommandKind.REGISTER,
            CommandKind.START,
            CommandKind.AUTHORIZE,
        ]
        assert not report.succeeded
        assert report.authorized
        assert sequencer.last_report is report
        assert report.summary()["steps"][0] == {"step": "register", "ok": False, "reason": "enable_failed"}

    async def test_register_surfaces_defect_verbatim(self):
        channel = ScriptedChannel({CommandKind.REGISTER: CommandResult.failed(FailureReason.NOT_IN_APP_BUNDLE)})
        result = await BootstrapSequencer(channel).register()
        assert result.reason == FailureReason.NOT_IN_APP_BUNDLE

    async def test_authorize_failure_is_not_authorized(self):
        channel = ScriptedChannel({CommandKind.AUTHORIZE: CommandResult.failed(FailureReason.COMM_FAILED)})
        result = await BootstrapSequencer(channel).authorize()
        assert result.reason == FailureReason.NOT_AUTHORIZED

    async def test_authorize_keeps_unreachable_helper(self):
        channel = ScriptedChannel({CommandKind.AUTHORIZE: CommandResult.failed(FailureReason.HELPER_NOT_FOUND)})
        result = await BootstrapSequencer(channel).authorize()
        assert result.reason == FailureReason.HELPER_NOT_FOUND

    async def test_custom_approve_timeout(self):
        channel = ScriptedChannel()
        await BootstrapSequencer(channel, approve_timeout_seconds=45).approve()
        assert channel.sent[0].timeout_seconds == 45
