"""Thin wrappers around the module system, venv creation and pip."""

from __future__ import annotations

import logging as py_logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from zenv.config import EffectiveConfig
from zenv.errors import ExitCode, ModuleLoadError, ProcessFailure, ZenvError

logger = py_logging.getLogger(__name__)

ACTIVATION_SCRIPT = "activate.sh"
SETUP_LOG = "zenv_setup.log"
_TIMEOUT_RETURNCODE = 124

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass(frozen=True)
class SetupOptions:
    """Switches of ``zenv setup``.

    ``upgrade`` upgrades an existing venv and its packages, ``force`` installs
    packages even when a loaded module already provides them, ``use_uv`` installs
    with ``uv pip`` and ``dev`` installs the project itself in editable mode.
    """

    upgrade: bool = False
    force: bool = False
    use_uv: bool = False
    dev: bool = False


def _module_prelude(modules: list[str]) -> list[str]:
    return [f"module load {shlex.quote(module)}" for module in modules]


def render_activation_script(effective: EffectiveConfig, venv_path: str | Path) -> str:
    venv = str(venv_path)
    lines = [
        "#!/usr/bin/env bash",
        f"# zenv activation script for '{effective.name}'",
        "",
    ]
    if effective.modules:
        lines.append("if command -v module >/dev/null 2>&1; then")
        for module in effective.modules:
            quoted = shlex.quote(module)
            lines.append(f"  module load {quoted} || {{ echo \"zenv: failed to load module {module}\" >&2; return 1; }}")
        lines.append("fi")
        lines.append("")
    lines.append(f"source {shlex.quote(venv + '/bin/activate')}")
    lines.append(f"export ZENV_ENV_DIR={shlex.quote(venv)}")
    lines.append(f"export ZENV_ENV_NAME={shlex.quote(effective.name)}")
    for key, value in effective.custom_activate_vars.items():
        lines.append(f"export {key}={shlex.quote(value)}")
    if effective.setup_commands:
        lines.append("")
        lines.extend(effective.setup_commands)
    return "\n".join(lines) + "\n"


def _install_command(venv_path: str | Path, options: SetupOptions) -> list[str]:
    venv = Path(venv_path)
    if options.use_uv:
        command = ["uv", "pip", "install", "--python", str(venv / "bin" / "python")]
    else:
        command = [str(venv / "bin" / "pip"), "install"]
    if options.upgrade:
        command.append("--upgrade")
    if options.force:
        command.append("--ignore-installed")
    return command


class Toolchain:
    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        runner: Runner = subprocess.run,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.runner = runner

    def _shell(self, script: str) -> subprocess.CompletedProcess[str]:
        logger.debug("Executing command=%s", script)
        return self.runner(
            ["bash", "-lc", script],
            shell=False,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            check=False,
        )

    def _run_step(self, modules: list[str], command: str, *, description: str) -> None:
        script = " && ".join([*_module_prelude(modules), command])
        try:
            completed = self._shell(script)
        except subprocess.TimeoutExpired as exc:
            logger.error("%s timed out command=%s", description, command)
            raise ProcessFailure(
                f"{description} timed out",
                hint="Retry, or run the command manually to inspect it.",
                command=command,
                returncode=_TIMEOUT_RETURNCODE,
            ) from exc
        except OSError as exc:
            raise ProcessFailure(
                f"{description} could not be started: {exc}",
                hint="Make sure bash is installed and on PATH.",
                command=command,
            ) from exc
        output = f"{completed.stdout or ''}{completed.stderr or ''}".strip()
        if output:
            logger.debug("Command output:\n%s", output)
        if completed.returncode != 0:
            raise ProcessFailure(
                f"{description} failed with exit code {completed.returncode}",
                hint=f"Run '{command}' manually, or 'zenv log <name>' to see the full output.",
                command=command,
                returncode=completed.returncode,
            )

    def load_modules(self, modules: list[str]) -> None:
        """Check each module loads on its own, stopping at the first failure."""
        for module in modules:
            command = f"module load {shlex.quote(module)}"
            try:
                completed = self._shell(command)
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise ModuleLoadError(
                    f"Could not run 'module load {module}': {exc}",
                    hint="Check that the module system is available in a login shell.",
                    command=command,
                    module=module,
                ) from exc
            if completed.returncode != 0:
                logger.warning("Module load failed module=%s returncode=%s", module, completed.returncode)
                raise ModuleLoadError(
                    f"Failed to load module '{module}'",
                    hint="Run 'module avail' to check the name, or fix 'modules' in zenv.json.",
                    command=command,
                    returncode=completed.returncode,
                    module=module,
                )
            logger.debug("Module %s loads", module)

    def create_venv(
        self,
        python: str,
        venv_path: str | Path,
        modules: list[str],
        *,
        upgrade: bool = False,
    ) -> None:
        venv = Path(venv_path)
        try:
            venv.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ZenvError(
                f"Could not create directory '{venv.parent}': {exc}",
                code=ExitCode.IO_ERROR,
                hint="Check 'base_dir' in zenv.json and the permissions of its parent.",
            ) from exc
        arguments = [python, "-m", "venv"]
        if upgrade and (venv / "bin" / "python").exists():
            arguments.append("--upgrade")
        arguments.append(str(venv))
        command = shlex.join(arguments)
        self._run_step(modules, command, description="Virtual environment creation")
        logger.info("Created virtual environment at %s", venv)

    def install(
        self,
        venv_path: str | Path,
        dependencies: list[str],
        modules: list[str],
        options: SetupOptions | None = None,
    ) -> None:
        if not dependencies:
            logger.info("No dependencies to install")
            return
        command = shlex.join([*_install_command(venv_path, options or SetupOptions()), *dependencies])
        self._run_step(modules, command, description="Dependency installation")
        logger.info("Installed %s dependencies", len(dependencies))

    def install_editable(
        self,
        venv_path: str | Path,
        project_dir: str | Path,
        modules: list[str],
        options: SetupOptions | None = None,
    ) -> None:
        command = shlex.join([*_install_command(venv_path, options or SetupOptions()), "-e", str(project_dir)])
        self._run_step(modules, command, description="Editable project installation")
        logger.info("Installed %s in editable mode", project_dir)

    def write_activation_script(self, effective: EffectiveConfig, venv_path: str | Path) -> Path:
        script = Path(venv_path) / ACTIVATION_SCRIPT
        try:
            script.parent.mkdir(parents=True, exist_ok=True)
            script.write_text(render_activation_script(effective, venv_path), encoding="utf-8")
            script.chmod(0o755)
        except OSError as exc:
            raise ZenvError(
                f"Could not write activation script '{script}': {exc}",
                code=ExitCode.IO_ERROR,
                hint="Check the permissions of the environment directory.",
            ) from exc
        logger.debug("Wrote activation script %s", script)
        return script

    def setup(
        self,
        effective: EffectiveConfig,
        venv_path: str | Path,
        dependencies: list[str],
        options: SetupOptions | None = None,
        *,
        project_dir: str | Path | None = None,
    ) -> Path:
        options = options or SetupOptions()
        self.load_modules(effective.modules)
        self.create_venv(effective.python_executable, venv_path, effective.modules, upgrade=options.upgrade)
        self.install(venv_path, dependencies, effective.modules, options)
        if options.dev:
            if project_dir is None:
                raise ValueError("project_dir is required for an editable install")
            self.install_editable(venv_path, project_dir, effective.modules, options)
        return self.write_activation_script(effective, venv_path)

    def run_in_environment(self, script: str | Path, argv: Sequence[str]) -> int:
        """Source ``script`` in a login shell, then replace the shell with ``argv``."""
        wrapper = f'source {shlex.quote(str(script))} && exec "$@"'
        logger.debug("Running %s inside %s", shlex.join(argv), script)
        try:
            completed = self.runner(["bash", "-lc", wrapper, "zenv-run", *argv], shell=False, check=False)
        except OSError as exc:
            raise ProcessFailure(
                f"Could not start '{argv[0]}': {exc}",
                hint="Make sure bash is installed and on PATH.",
                command=shlex.join(argv),
            ) from exc
        return completed.returncode
