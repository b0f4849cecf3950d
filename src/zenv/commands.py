"""Command handlers shared by the CLI.

Each handler receives a :class:`CommandContext` that carries the registry loaded for
this process together with the collaborators it needs. Handlers that mutate the
registry save it before returning.
"""

from __future__ import annotations

import logging as py_logging
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from zenv import config as config_module
from zenv.config import Configuration, EffectiveConfig
from zenv.errors import ExitCode, IdentifierNotFound, MissingHostname, ProcessFailure, ZenvError
from zenv.hostname import HostnameProvider, current_hostname
from zenv.logging import capture_to_file
from zenv.matching import matches_any
from zenv.paths import project_config_path
from zenv.registry import EnvironmentRegistry, RegistryEntry, venv_path_for
from zenv.resolver import resolve
from zenv.settings import Settings
from zenv.toolchain import ACTIVATION_SCRIPT, SETUP_LOG, SetupOptions, Toolchain
from zenv.validation import read_requirements, require_eligible, validate, validate_dependencies

logger = py_logging.getLogger(__name__)


@dataclass
class CommandContext:
    registry: EnvironmentRegistry
    settings: Settings = field(default_factory=Settings)
    cwd: Path = field(default_factory=Path.cwd)
    hostname_provider: HostnameProvider = current_hostname
    toolchain: Toolchain = field(default_factory=Toolchain)
    out: TextIO | None = None

    def echo(self, message: str) -> None:
        print(message, file=self.out or sys.stdout)

    @property
    def config_path(self) -> Path:
        return project_config_path(self.cwd)


def _hostname_for_merge(context: CommandContext, *, no_host: bool) -> str | None:
    if not no_host:
        return context.hostname_provider()
    try:
        return context.hostname_provider()
    except MissingHostname:
        logger.debug("No hostname available; targets without patterns match any machine")
        return None


def _prepare(context: CommandContext, env_name: str, *, no_host: bool) -> tuple[Configuration, EffectiveConfig]:
    configuration = config_module.parse(context.config_path)
    hostname = _hostname_for_merge(context, no_host=no_host)
    effective = validate(
        configuration.resolve(env_name, hostname=hostname, default_python=context.settings.default_python)
    )
    require_eligible(effective, lambda: hostname or "", bypass=no_host)
    return configuration, effective


def _collect_dependencies(configuration: Configuration, effective: EffectiveConfig) -> list[str]:
    dependencies = list(effective.dependencies)
    if effective.requirements_file:
        requirements = configuration.project_dir / effective.requirements_file
        if requirements.is_file():
            dependencies.extend(read_requirements(requirements))
        else:
            logger.warning("Requirements file %s not found; using configured dependencies only", requirements)
    return validate_dependencies(dependencies)


def _register(context: CommandContext, configuration: Configuration, effective: EffectiveConfig) -> RegistryEntry:
    entry = context.registry.register(
        effective.name,
        configuration.project_dir,
        effective.base_dir,
        description=effective.description,
        target_patterns=effective.target_machines,
    )
    context.registry.save()
    return entry


def init(context: CommandContext) -> Path:
    path = context.config_path
    if path.exists():
        raise ZenvError(
            f"{path.name} already exists in {context.cwd}",
            code=ExitCode.CONFIG_ERROR,
            hint="Edit the existing file, or remove it before running 'zenv init'.",
        )
    config_module.write_template(path)
    logger.info("Created %s", path)
    context.echo(f"Created {path}")
    return path


def setup(
    context: CommandContext,
    env_name: str,
    *,
    no_host: bool = False,
    options: SetupOptions | None = None,
) -> RegistryEntry:
    options = options or SetupOptions()
    configuration, effective = _prepare(context, env_name, no_host=no_host)
    venv = venv_path_for(configuration.project_dir, effective.base_dir, effective.name)
    with capture_to_file(venv / SETUP_LOG):
        logger.info("Setting up '%s' in %s (%s)", effective.name, venv, options)
        dependencies = _collect_dependencies(configuration, effective)
        logger.info("Installing %s dependencies: %s", len(dependencies), " ".join(dependencies) or "none")
        script = context.toolchain.setup(
            effective,
            venv,
            dependencies,
            options,
            project_dir=configuration.project_dir,
        )
    entry = _register(context, configuration, effective)
    context.echo(f"Environment '{entry.env_name}' ({entry.short_id}) is ready.")
    context.echo(f"Activate with: source {script}")
    return entry


def register(context: CommandContext, env_name: str, *, no_host: bool = False) -> RegistryEntry:
    configuration, effective = _prepare(context, env_name, no_host=no_host)
    entry = _register(context, configuration, effective)
    context.echo(f"Registered '{entry.env_name}' ({entry.short_id}) at {entry.venv_path}")
    return entry


def deregister(context: CommandContext, identifier: str) -> None:
    if not context.registry.deregister(identifier, cwd=context.cwd):
        raise IdentifierNotFound(
            f"Environment with name or ID '{identifier}' not found in registry",
            hint="Run 'zenv list --all' to see registered environments and their IDs.",
        )
    context.registry.save()
    context.echo(f"Deregistered '{identifier}'. The environment directory was left in place.")


def _deletable_venv(entry: RegistryEntry) -> Path:
    """Return the venv path of ``entry`` if it is a plain child of its base directory."""
    venv = Path(entry.venv_path).expanduser()
    resolved = venv.resolve()
    project = Path(entry.project_dir).expanduser().resolve()
    if (
        entry.env_name in ("", ".", "..")
        or venv.name != entry.env_name
        or resolved.parent != venv.parent.resolve()
        or resolved == project
        or resolved in project.parents
    ):
        raise ZenvError(
            f"Refusing to delete '{venv}' for '{entry.env_name}': it is not inside its base directory",
            code=ExitCode.REGISTRY_ERROR,
            hint=f"Delete the directory by hand if needed, then run 'zenv deregister {entry.short_id}'.",
        )
    return venv


def remove(context: CommandContext, identifier: str) -> RegistryEntry:
    entry = resolve(context.registry, identifier, cwd=context.cwd)
    venv = _deletable_venv(entry)
    if venv.exists():
        try:
            shutil.rmtree(venv)
        except OSError as exc:
            raise ZenvError(
                f"Could not delete '{venv}': {exc}",
                code=ExitCode.IO_ERROR,
                hint="Check the permissions of the environment directory.",
            ) from exc
        logger.info("Deleted %s", venv)
    else:
        logger.warning("Environment directory %s does not exist", venv)
    context.registry.remove(entry)
    context.registry.save()
    context.echo(f"Removed '{entry.env_name}' ({entry.short_id}).")
    return entry


def format_entry(entry: RegistryEntry) -> str:
    line = f"{entry.short_id}  {entry.env_name}  {entry.project_dir}  [{entry.target_machines}]"
    if entry.description:
        line += f"  {entry.description}"
    return line


def list_environments(context: CommandContext, *, show_all: bool = False) -> list[RegistryEntry]:
    if show_all or context.settings.list_all:
        entries = list(context.registry.entries)
    else:
        hostname = context.hostname_provider()
        entries = [entry for entry in context.registry.entries if matches_any(hostname, entry.target_patterns)]
        logger.debug("%s of %s entries are eligible on %s", len(entries), len(context.registry.entries), hostname)
    if not entries:
        if show_all or context.settings.list_all:
            context.echo("No environments registered.")
        else:
            context.echo("No environments registered for this machine.")
        return entries
    for entry in entries:
        context.echo(format_entry(entry))
    return entries


def cd(context: CommandContext, identifier: str) -> Path:
    entry = resolve(context.registry, identifier, cwd=context.cwd)
    project = Path(entry.project_dir)
    if not project.is_dir():
        logger.warning("Project directory %s no longer exists", project)
    context.echo(str(project))
    return project


def _activation_script(entry: RegistryEntry) -> Path:
    script = Path(entry.venv_path) / ACTIVATION_SCRIPT
    if not script.is_file():
        raise ZenvError(
            f"Activation script '{script}' not found for '{entry.env_name}'",
            code=ExitCode.CONFIG_ERROR,
            hint=f"Run 'zenv setup {entry.env_name}' in {entry.project_dir}.",
        )
    return script


def activate(context: CommandContext, identifier: str) -> Path:
    entry = resolve(context.registry, identifier, cwd=context.cwd)
    script = _activation_script(entry)
    context.echo(str(script))
    return script


def run(context: CommandContext, identifier: str, argv: list[str]) -> int:
    if not argv:
        raise ZenvError(
            "No command given to run",
            code=ExitCode.INVALID_ARGS,
            hint="Usage: zenv run <name|id> <command> [args...].",
        )
    entry = resolve(context.registry, identifier, cwd=context.cwd)
    script = _activation_script(entry)
    returncode = context.toolchain.run_in_environment(script, argv)
    if returncode != 0:
        raise ProcessFailure(
            f"Command '{argv[0]}' exited with status {returncode} in '{entry.env_name}'",
            hint="Check the command output above.",
            command=" ".join(argv),
            returncode=returncode,
        )
    return returncode


def show_log(context: CommandContext, identifier: str) -> Path:
    entry = resolve(context.registry, identifier, cwd=context.cwd)
    path = Path(entry.venv_path) / SETUP_LOG
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise ZenvError(
            f"No setup log found for '{entry.env_name}' at {path}",
            code=ExitCode.IO_ERROR,
            hint=f"Run 'zenv setup {entry.env_name}' in {entry.project_dir}.",
        ) from None
    except OSError as exc:
        raise ZenvError(
            f"Could not read setup log '{path}': {exc}",
            code=ExitCode.IO_ERROR,
            hint="Check the permissions of the environment directory.",
        ) from exc
    context.echo(content.rstrip("\n"))
    return path


def validate_config(context: CommandContext, path: str | Path | None = None) -> list[EffectiveConfig]:
    if path is None:
        config_path = context.config_path
    else:
        config_path = Path(path)
        if not config_path.is_absolute():
            config_path = context.cwd / config_path
        if config_path.is_dir():
            config_path = project_config_path(config_path)
    configuration = config_module.parse(config_path)
    validated = [
        validate(configuration.resolve(name, default_python=context.settings.default_python))
        for name in configuration.names()
    ]
    context.echo(f"{configuration.path.name} is valid ({len(validated)} environment(s)).")
    return validated
