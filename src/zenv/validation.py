"""Environment validation: required fields, host eligibility and dependency lists."""

from __future__ import annotations

import logging as py_logging
import re
import sys
from collections.abc import Iterable
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from zenv.config import EffectiveConfig
from zenv.errors import ConfigReadError, ConfigSchemaInvalid, TargetMismatch
from zenv.hostname import HostnameProvider, current_hostname
from zenv.matching import matches_any

logger = py_logging.getLogger(__name__)

_ALLOWED_DEPENDENCY = re.compile(r"^[A-Za-z0-9\-_.<>=~!, \[\]]+$")
_NAME_TERMINATORS = re.compile(r"[<>=~!\[]")
_LIST_FIELDS = ("modules", "dependencies", "setup_commands")
_SHELL_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate(effective: EffectiveConfig) -> EffectiveConfig:
    if not effective.python_executable.strip():
        raise ConfigSchemaInvalid(
            f"Environment '{effective.name}' has an empty python_executable",
            hint="Set python_executable in the environment or the common section.",
        )
    if not effective.base_dir.strip():
        raise ConfigSchemaInvalid(
            f"Environment '{effective.name}' has no base directory",
            hint="Set base_dir in the common section.",
        )
    for field_name in _LIST_FIELDS:
        values = getattr(effective, field_name)
        if any(not item.strip() for item in values):
            raise ConfigSchemaInvalid(
                f"Environment '{effective.name}' has an empty entry in '{field_name}'",
                hint=f"Remove empty strings from '{field_name}'.",
            )
    for key in effective.custom_activate_vars:
        if not _SHELL_NAME.match(key):
            raise ConfigSchemaInvalid(
                f"Environment '{effective.name}' has an invalid activation variable name '{key}'",
                hint="Use letters, digits and underscores, not starting with a digit.",
            )
    return effective


def is_eligible(effective: EffectiveConfig, hostname: str) -> bool:
    return matches_any(hostname, effective.target_machines)


def require_eligible(
    effective: EffectiveConfig,
    hostname_provider: HostnameProvider = current_hostname,
    *,
    bypass: bool = False,
) -> None:
    """Fail unless the current machine matches the environment's targets.

    ``bypass`` skips the check entirely, including hostname discovery.
    """
    if bypass:
        logger.warning("Skipping hostname validation for '%s' (--no-host)", effective.name)
        return

    hostname = hostname_provider()
    if is_eligible(effective, hostname):
        logger.debug("Host %s is eligible for environment '%s'", hostname, effective.name)
        return

    targets = ", ".join(effective.target_machines)
    raise TargetMismatch(
        f"Current machine '{hostname}' does not match targets [{targets}] of environment '{effective.name}'",
        hint="Use --no-host to bypass the check, or add this machine to target_machines.",
    )


def _requirements_txt(content: str) -> list[str]:
    dependencies: list[str] = []
    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        dependencies.append(line)
    return dependencies


def _pyproject(content: str, path: Path) -> list[str]:
    try:
        document = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigReadError(
            f"Could not parse '{path}': {exc}",
            hint="Fix the TOML syntax of the pyproject file.",
        ) from exc
    project = document.get("project", {})
    dependencies = project.get("dependencies", []) if isinstance(project, dict) else []
    if not isinstance(dependencies, list):
        logger.warning("Ignoring non-list [project].dependencies in %s", path)
        return []
    return [item.strip() for item in dependencies if isinstance(item, str)]


def read_requirements(path: str | Path) -> list[str]:
    resolved = Path(path)
    try:
        content = resolved.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(
            f"Could not read requirements file '{resolved}': {exc}",
            hint="Check requirements_file in zenv.json.",
        ) from exc
    if resolved.suffix == ".toml":
        dependencies = _pyproject(content, resolved)
    else:
        dependencies = _requirements_txt(content)
    logger.debug("Read %s dependencies from %s", len(dependencies), resolved)
    return dependencies


def package_name(dependency: str) -> str:
    match = _NAME_TERMINATORS.search(dependency)
    name = dependency[: match.start()] if match else dependency
    return name.strip().lower()


def validate_dependencies(dependencies: Iterable[str]) -> list[str]:
    """Drop unusable entries and later duplicates of the same package, keeping order."""
    valid: list[str] = []
    seen: set[str] = set()
    for raw in dependencies:
        dependency = raw.strip()
        if not dependency:
            logger.warning("Skipping empty dependency")
            continue
        if "/" in dependency:
            logger.warning("Skipping dependency that looks like a path: '%s'", dependency)
            continue
        if not _ALLOWED_DEPENDENCY.match(dependency) or not any(char.isalpha() for char in dependency):
            logger.warning("Skipping invalid dependency: '%s'", dependency)
            continue
        name = package_name(dependency)
        if name in seen:
            logger.warning("Skipping duplicate package '%s'", dependency)
            continue
        seen.add(name)
        valid.append(dependency)
    return valid
