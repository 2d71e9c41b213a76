"""Command line entry point: ``battery-watchdog <command>``."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from battery_watchdog.models.config import WatchdogConfig
from battery_watchdog.runtime.daemon import configure_logging, run_daemon
from battery_watchdog.runtime.watchdog import OperationResult, Watchdog


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _report(result: OperationResult) -> int:
    _print_json(result.model_dump(mode="json"))
    return 0 if result.ok else 2


def cmd_run(args: argparse.Namespace) -> int:
    asyncio.run(run_daemon(args.config))
    return 0


def cmd_command(args: argparse.Namespace) -> int:
    watchdog = Watchdog(args.config)
    return _report(asyncio.run(watchdog.execute_command(args.name)))


def cmd_sample(args: argparse.Namespace) -> int:
    watchdog = Watchdog(args.config)
    return _report(asyncio.run(watchdog.sample_battery()))


def cmd_bootstrap(args: argparse.Namespace) -> int:
    watchdog = Watchdog(args.config)
    return _report(asyncio.run(watchdog.bootstrap()))


def cmd_test_notify(args: argparse.Namespace) -> int:
    watchdog = Watchdog(args.config)
    return _report(asyncio.run(watchdog.test_notify(args.threshold)))


def cmd_settings(args: argparse.Namespace) -> int:
    watchdog = Watchdog(args.config)
    changes = {}
    for pair in args.set or []:
        key, _, value = pair.partition("=")
        changes[key.strip()] = json.loads(value) if value.strip() else None
    settings = watchdog.update_settings(changes) if changes else watchdog.get_settings()
    _print_json(settings.model_dump(mode="json"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="battery-watchdog", description="Battery watchdog")
    parser.add_argument("--helper", help="Path or name of the privileged helper executable")
    parser.add_argument("--settings-path", help="Where user settings are stored")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Poll the battery and alert until interrupted")
    run.set_defaults(func=cmd_run)

    command = sub.add_parser("command", help="Execute one helper command with repair")
    command.add_argument("name", help="e.g. disable_power_adapter, charge-limit, is_supported")
    command.set_defaults(func=cmd_command)

    sample = sub.add_parser("sample", help="Print one battery sample")
    sample.set_defaults(func=cmd_sample)

    bootstrap = sub.add_parser("bootstrap", help="Register, start, approve and authorize the helper")
    bootstrap.set_defaults(func=cmd_bootstrap)

    test_notify = sub.add_parser("test-notify", help="Store a threshold and alert once if below it")
    test_notify.add_argument("--threshold", type=int)
    test_notify.set_defaults(func=cmd_test_notify)

    settings = sub.add_parser("settings", help="Show or update user settings")
    settings.add_argument("--set", action="append", metavar="KEY=JSON")
    settings.set_defaults(func=cmd_settings)

    return parser


def _load_config(args: argparse.Namespace) -> WatchdogConfig:
    overrides = {}
    if args.helper:
        overrides["helper_path"] = args.helper
    if args.settings_path:
        overrides["settings_path"] = args.settings_path
    if args.log_level:
        overrides["log_level"] = args.log_level
    return WatchdogConfig(**overrides)


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.config = _load_config(args)
    configure_logging(args.config.log_level)
    try:
        exit_code = args.func(args)
    except (ValueError, KeyboardInterrupt) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
