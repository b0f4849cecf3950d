"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
from collections.abc import Sequence
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from zenv import commands
from zenv.commands import CommandContext
from zenv.errors import ExitCode, ZenvError, user_facing_error
from zenv.hostname import HostnameProvider, current_hostname
from zenv.logging import configure_logging, default_log_path
from zenv.registry import EnvironmentRegistry
from zenv.settings import load_settings
from zenv.toolchain import SetupOptions, Toolchain

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_DISTRIBUTION = "zenv"


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _identifier_type(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise argparse.ArgumentTypeError("identifier must not be empty")
    return stripped


def _console_debug(logger: py_logging.Logger) -> bool:
    return any(
        type(handler) is py_logging.StreamHandler and handler.level <= py_logging.DEBUG for handler in logger.handlers
    )


def package_version() -> str:
    try:
        return version(_DISTRIBUTION)
    except PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zenv",
        description="Manage Python virtual environments across HPC machines.",
    )
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    subparsers.add_parser("init", help="Create a template zenv.json in the current directory")

    for name, help_text in (
        ("setup", "Create, install and register an environment from zenv.json"),
        ("register", "Register an environment from zenv.json without installing it"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("env_name")
        command.add_argument(
            "--no-host",
            action="store_true",
            help="Skip the check that this machine matches the environment's targets",
        )
        if name == "setup":
            command.add_argument("--upgrade", action="store_true", help="Upgrade an existing venv and its packages")
            command.add_argument(
                "--force",
                action="store_true",
                help="Install dependencies even when a loaded module provides them",
            )
            command.add_argument("--uv", action="store_true", dest="use_uv", help="Install with 'uv pip'")
            command.add_argument("--dev", action="store_true", help="Install the project itself in editable mode")

    for name, help_text in (
        ("deregister", "Remove an environment from the registry, keeping its files"),
        ("rm", "Remove an environment from the registry and delete its directory"),
        ("cd", "Print the project directory of an environment"),
        ("activate", "Print the activation script path of an environment"),
        ("log", "Print the setup log of an environment"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("identifier", type=_identifier_type, help="Name, full ID, ID prefix or '.'")

    run_command = subparsers.add_parser("run", help="Run a command inside an activated environment")
    run_command.add_argument("identifier", type=_identifier_type, help="Name, full ID, ID prefix or '.'")
    run_command.add_argument("argv", nargs=argparse.REMAINDER, metavar="command", help="Command and its arguments")

    list_command = subparsers.add_parser("list", help="List registered environments")
    list_command.add_argument("--all", action="store_true", dest="show_all", help="Include other machines")

    validate_command = subparsers.add_parser("validate", help="Validate zenv.json, or the file or directory given")
    validate_command.add_argument("path", nargs="?", type=Path, default=None, help="Config file or project directory")
    subparsers.add_parser("version", help="Print the zenv version")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def dispatch(namespace: argparse.Namespace, context: CommandContext) -> int:
    command = namespace.command
    if command == "init":
        commands.init(context)
    elif command == "setup":
        options = SetupOptions(
            upgrade=namespace.upgrade,
            force=namespace.force,
            use_uv=namespace.use_uv,
            dev=namespace.dev,
        )
        commands.setup(context, namespace.env_name, no_host=namespace.no_host, options=options)
    elif command == "register":
        commands.register(context, namespace.env_name, no_host=namespace.no_host)
    elif command == "deregister":
        commands.deregister(context, namespace.identifier)
    elif command == "rm":
        commands.remove(context, namespace.identifier)
    elif command == "list":
        commands.list_environments(context, show_all=namespace.show_all)
    elif command == "cd":
        commands.cd(context, namespace.identifier)
    elif command == "activate":
        commands.activate(context, namespace.identifier)
    elif command == "log":
        commands.show_log(context, namespace.identifier)
    elif command == "run":
        commands.run(context, namespace.identifier, namespace.argv)
    elif command == "validate":
        commands.validate_config(context, namespace.path)
    else:
        raise ZenvError(f"Unknown command '{command}'", code=ExitCode.INVALID_ARGS, hint="Run 'zenv --help'.")
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    hostname_provider: HostnameProvider | None = None,
    toolchain: Toolchain | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.command == "version":
        print(f"zenv {package_version()}")
        return int(ExitCode.SUCCESS)

    settings = load_settings()
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or settings.log_level, log_file=log_path)

    try:
        registry = EnvironmentRegistry.load()
        if registry.repaired:
            logger.info("Saving repaired legacy registry entries")
            registry.save()
        context = CommandContext(
            registry=registry,
            settings=settings,
            cwd=Path.cwd(),
            hostname_provider=hostname_provider or current_hostname,
            toolchain=toolchain or Toolchain(),
        )
        logger.debug("Running command %s", namespace.command)
        return dispatch(namespace, context)
    except ZenvError as exc:
        logger.error(
            "Handled ZenvError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=_console_debug(logger),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        hint = f"Inspect logs: {log_path}"
        print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
