"""Command line entry point.

Usage:
    runtipi-cli start [--env-file PATH] [--no-permissions]
    runtipi-cli stop
    runtipi-cli restart [--env-file PATH] [--no-permissions]
    runtipi-cli update VERSION [--env-file PATH] [--no-permissions]
    runtipi-cli app {start,stop,uninstall,reset,update} ID
    runtipi-cli app start-all
    runtipi-cli reset-password
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from pydantic import ValidationError

from runtipi_cli import __version__
from runtipi_cli.apps import AppAction, AppClient
from runtipi_cli.config import Settings, get_settings
from runtipi_cli.environment import EnvironmentStore
from runtipi_cli.errors import ConfigurationError, RuntipiError, VersionParseError
from runtipi_cli.installer import BinaryInstaller
from runtipi_cli.lifecycle import ComposeRuntime, StackOrchestrator
from runtipi_cli.logging import get_logger, setup_logging
from runtipi_cli.progress import ConsoleReporter, ProgressReporter
from runtipi_cli.releases import ReleaseIndex
from runtipi_cli.system import SystemFiles
from runtipi_cli.update import UpdatePipeline, UpdateRequest, UpdateStatus
from runtipi_cli.versions import VersionSpec, parse_version

log = get_logger("runtipi_cli.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _version_arg(value: str) -> VersionSpec:
    try:
        return parse_version(value)
    except VersionParseError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_start_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-e",
        "--env-file",
        type=Path,
        default=None,
        help="Path to a custom .env file. Can be relative to the current directory or absolute.",
    )
    parser.add_argument(
        "--no-permissions",
        action="store_true",
        help="Skip setting file permissions (not recommended)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="runtipi-cli", description="Manage your Runtipi instance")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    _add_start_options(sub.add_parser("start", help="Start your runtipi instance"))
    sub.add_parser("stop", help="Stop your runtipi instance")
    _add_start_options(sub.add_parser("restart", help="Restart your runtipi instance"))

    update = sub.add_parser("update", help="Update your runtipi instance")
    update.add_argument(
        "version", type=_version_arg, help="The version to update to eg: v2.5.0 or latest"
    )
    _add_start_options(update)

    app = sub.add_parser("app", help="Manage your apps")
    app_sub = app.add_subparsers(dest="app_command", required=True)
    for action in AppAction:
        action_parser = app_sub.add_parser(action.value, help=f"{action.value.capitalize()} an app")
        action_parser.add_argument("id", help=f"The id of the app to {action.value}")
    app_sub.add_parser("start-all", help="Start all apps")

    sub.add_parser("reset-password", help="Initiate a password reset for the admin user")
    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _orchestrator(settings: Settings, reporter: ProgressReporter) -> StackOrchestrator:
    runtime = ComposeRuntime(
        settings.root_folder,
        compose_command=settings.compose_command,
        docker_command=settings.docker_command,
        command_timeout=settings.command_timeout,
        pull_timeout=settings.pull_timeout,
        up_timeout=settings.up_timeout,
    )
    return StackOrchestrator(
        settings,
        runtime,
        SystemFiles(settings.root_folder, settings.assets_dir),
        EnvironmentStore(settings.env_file_path),
        reporter,
    )


async def _run_update(
    args: argparse.Namespace, settings: Settings, reporter: ProgressReporter
) -> int:
    token = settings.github_token.get_secret_value() if settings.github_token else None
    index = ReleaseIndex(
        settings.release_owner,
        settings.release_repo,
        settings.latest_release_repo,
        api_url=settings.github_api_url,
        token=token,
        timeout=settings.http_timeout,
    )
    installer = BinaryInstaller(
        settings.executable_path,
        download_timeout=settings.download_timeout,
        command_timeout=settings.command_timeout,
        work_dir=settings.root_folder,
    )
    pipeline = UpdatePipeline(
        settings, index, installer, EnvironmentStore(settings.env_file_path), reporter
    )
    try:
        result = await pipeline.run(
            UpdateRequest(
                version=args.version,
                env_file=args.env_file,
                no_permissions=args.no_permissions,
            )
        )
    finally:
        await index.close()

    if result.status is not UpdateStatus.SUCCESS and result.error is not None:
        raise result.error

    if result.dashboard_url:
        reporter.info(f"Visit {result.dashboard_url} to access the dashboard")
    reporter.info(f"You are now running version {result.target_version}")
    return EXIT_OK


async def _run_app(args: argparse.Namespace, settings: Settings, reporter: ProgressReporter) -> int:
    secret = EnvironmentStore(settings.env_file_path).load().get("JWT_SECRET")
    client = AppClient(settings.api_base_url, secret, timeout=settings.http_timeout)

    if args.app_command == "start-all":
        reporter.begin("Starting all apps...")
        await client.start_all()
        reporter.succeed("All apps started successfully!")
        return EXIT_OK

    action = AppAction(args.app_command)
    reporter.begin(f"{action.progressive} app {args.id}...")
    await client.run(action, args.id)
    reporter.succeed(f"App {action.past_tense} successfully!")
    return EXIT_OK


async def dispatch(args: argparse.Namespace, settings: Settings, reporter: ProgressReporter) -> int:
    """Run the parsed command; errors propagate to ``main``."""
    if args.command == "start":
        await _orchestrator(settings, reporter).start(args.env_file, args.no_permissions)
    elif args.command == "stop":
        await _orchestrator(settings, reporter).stop()
    elif args.command == "restart":
        await _orchestrator(settings, reporter).restart(args.env_file, args.no_permissions)
    elif args.command == "update":
        return await _run_update(args, settings, reporter)
    elif args.command == "app":
        return await _run_app(args, settings, reporter)
    elif args.command == "reset-password":
        SystemFiles(settings.root_folder).request_password_reset()
        reporter.succeed(
            "Password reset request created. Head back to the dashboard to set a new password."
        )
    return EXIT_OK


def report_error(exc: RuntipiError, stream: TextIO) -> None:
    """Print a human readable diagnostic for *exc*."""
    print(f"\nError: {exc}", file=stream)
    if exc.details:
        print(f"\nDebug: {exc.details}", file=stream)
    if exc.hint:
        print(f"\n{exc.hint}", file=stream)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        setup_logging()
        settings = get_settings()
    except ValidationError as exc:
        report_error(
            ConfigurationError("Invalid CLI configuration", details=str(exc)), sys.stderr
        )
        return EXIT_FAILURE
    reporter = ConsoleReporter()

    try:
        return asyncio.run(dispatch(args, settings, reporter))
    except RuntipiError as exc:
        log.debug("command_failed", command=args.command, error=str(exc))
        report_error(exc, sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
