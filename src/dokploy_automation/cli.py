from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from .config import DEFAULT_CONFIG, AutomationConfig, load_config, load_vars_file
from .errors import UnknownTarget
from .inventory import InventoryResolver
from .roles import PLAYBOOKS, PlaybookComposer
from .runner import TaskRunner
from .types import ActionResult, Outcome, RunResult, TaskSpec
from .variables import parse_assignment, resolve

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    GREY = "\033[90m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Install and harden Dokploy on a remote Ubuntu host")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to the config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", metavar="{deploy,harden}")
    commands.required = True
    helps = {
        "deploy": "Install Docker and Dokploy and open the firewall baseline",
        "harden": "Install fail2ban, close the setup port and lock down sshd",
    }
    for name in PLAYBOOKS:
        sub = commands.add_parser(name, help=helps.get(name))
        _add_run_arguments(sub)
    return parser.parse_args(argv)


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--inventory", type=Path, help="Inventory TOML file (default from config)")
    parser.add_argument("--target", help="Inventory target name (default from config: production)")
    parser.add_argument("--address", help="Target host address, overrides the inventory")
    parser.add_argument("--user", help="SSH user, overrides the inventory")
    parser.add_argument("--port", type=int, help="SSH port, overrides the inventory")
    credentials = parser.add_mutually_exclusive_group()
    credentials.add_argument("--key-file", type=Path, help="Private key file")
    credentials.add_argument("--key-env", help="Environment variable holding the private key material")
    parser.add_argument("--known-hosts", type=Path, help="known_hosts file used to verify the host key")
    parser.add_argument("--vars-file", type=Path, help="TOML file of variable overrides")
    parser.add_argument(
        "-e",
        "--extra-var",
        dest="extra_vars",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Variable override, may be repeated",
    )
    parser.add_argument("--dry-run", action="store_true", help="Probe and report changes without applying them")


def configure_logging(level: str) -> None:
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(levelname)s %(name)s - %(message)s",
    )
    if resolved > logging.DEBUG:
        logging.getLogger("paramiko").setLevel(logging.WARNING)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        _apply_aws_env(cfg)
        inventory = InventoryResolver.from_file(args.inventory or cfg.inventory)
        host = inventory.resolve(args.target or cfg.target, _target_overrides(args, cfg))
        playbook = PlaybookComposer().compose(args.command)
        overrides = _run_overrides(args, cfg)
    except UnknownTarget as exc:
        print(colorize(f"Unknown target: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FAILED
    except ValueError as exc:
        print(colorize(f"Invalid configuration: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FAILED

    runner = TaskRunner(
        playbook,
        cfg.variables,
        overrides=overrides,
        dry_run=args.dry_run,
        connect_timeout=cfg.connect_timeout,
        progress_callback=print_progress,
    )
    previous = _install_cancel_handlers(runner)
    try:
        runs = runner.run([host])
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FAILED
    finally:
        _restore_signal_handlers(previous)

    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    for run in runs:
        for result in run.results:
            _clear_progress()
            summary.add(result)
            if not should_display_result(result, effective_level):
                continue
            print(format_result(result))
            if args.dry_run and result.diff:
                print(result.diff.rstrip("\n"))

    _clear_progress()
    print(summary.render(dry_run=args.dry_run))
    return exit_status(runs)


def exit_status(runs: Sequence[RunResult]) -> int:
    if any(run.failed for run in runs):
        return EXIT_FAILED
    if any(run.cancelled for run in runs):
        return EXIT_CANCELLED
    return EXIT_OK


def _target_overrides(args: argparse.Namespace, cfg: AutomationConfig) -> dict[str, Any]:
    return {
        "address": args.address,
        "user": args.user,
        "port": args.port,
        "key_file": args.key_file,
        "key_env": args.key_env,
        "known_hosts": args.known_hosts or cfg.known_hosts,
    }


def _run_overrides(args: argparse.Namespace, cfg: AutomationConfig) -> dict[str, Any]:
    layers: list[dict[str, Any]] = []
    vars_file = args.vars_file or cfg.vars_file
    if vars_file:
        layers.append(load_vars_file(vars_file))
    layers.append(dict(parse_assignment(item) for item in args.extra_vars))
    return resolve(layers)


def _install_cancel_handlers(runner: TaskRunner) -> dict[int, Any]:
    def _cancel(signum, frame) -> None:  # noqa: ARG001
        _clear_progress()
        logging.getLogger(__name__).warning(
            "Received %s; stopping after the current task", signal.Signals(signum).name
        )
        runner.cancel()

    previous: dict[int, Any] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, _cancel)
        except ValueError:
            # Not on the main thread; cancellation stays programmatic.
            break
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


_STATUS_COLORS = {
    Outcome.CHANGED: Ansi.GREEN,
    Outcome.WOULD_CHANGE: Ansi.YELLOW,
    Outcome.UNCHANGED: Ansi.BLUE,
    Outcome.SKIPPED: Ansi.GREY,
    Outcome.FAILED: Ansi.RED,
    Outcome.NOT_ATTEMPTED: Ansi.ORANGE,
}


def format_result(result: ActionResult) -> str:
    status = result.outcome.value
    if result.failed and result.ignored:
        status = "failed (ignored)"
    resource = f"[{result.resource}]" if result.resource else ""
    kind = "handler" if result.handler else result.action
    line = f"{result.host}::{kind}{resource} {status} - {result.task}: {result.details}"
    return colorize(line, _STATUS_COLORS.get(result.outcome))


def should_display_result(result: ActionResult, log_level: int) -> bool:
    if result.outcome in (Outcome.UNCHANGED, Outcome.SKIPPED):
        return log_level <= logging.DEBUG
    return True


def print_progress(host, task: TaskSpec) -> None:
    global _last_progress_len
    if not sys.stdout.isatty():
        return
    line = f"{host.name}::{task.type} {task.name} pending..."
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


def _apply_aws_env(cfg) -> None:
    if getattr(cfg, "aws_profile", None) and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile  # type: ignore[assignment]
    if getattr(cfg, "aws_region", None):
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region  # type: ignore[assignment]
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region  # type: ignore[assignment]


class Summary:
    def __init__(self) -> None:
        self.changed = 0
        self.unchanged = 0
        self.skipped = 0
        self.failures = 0
        self.not_attempted = 0

    def add(self, result: ActionResult) -> None:
        if result.failed:
            if not result.ignored:
                self.failures += 1
            return
        if result.changed:
            self.changed += 1
        elif result.outcome is Outcome.UNCHANGED:
            self.unchanged += 1
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.not_attempted += 1

    def render(self, *, dry_run: bool = False) -> str:
        parts = [
            f"{'Would change' if dry_run else 'Changed'}: {self.changed}",
            f"Unchanged: {self.unchanged}",
            f"Skipped: {self.skipped}",
            f"Failed: {self.failures}",
        ]
        if self.not_attempted:
            parts.append(f"Not attempted: {self.not_attempted}")
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
