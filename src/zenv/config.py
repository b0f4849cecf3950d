"""Project configuration (``zenv.json``) parsing and layer merging."""

from __future__ import annotations

import json
import logging as py_logging
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from zenv.errors import (
    ConfigNotFound,
    ConfigReadError,
    ConfigSchemaInvalid,
    EnvironmentNotFound,
    ExitCode,
    JsonInvalid,
    ZenvError,
)
from zenv.hostname import cluster_name
from zenv.paths import CONFIG_FILENAME
from zenv.settings import DEFAULT_PYTHON

logger = py_logging.getLogger(__name__)

COMMON_KEY = "common"
BASE_DIR_KEY = "base_dir"
RESERVED_KEYS = frozenset({COMMON_KEY, BASE_DIR_KEY})
_LEGACY_TARGET_KEY = "target_machine"

TEMPLATE: dict[str, object] = {
    COMMON_KEY: {
        "base_dir": "zenv",
        "python_executable": DEFAULT_PYTHON,
        "requirements_file": "requirements.txt",
        "modules": [],
        "dependencies": [],
        "custom_activate_vars": {},
        "setup_commands": [],
    },
    "default": {
        "target_machines": ["any"],
        "description": "Default environment",
        "dependencies": [],
    },
}


def _none_to_list(value: object) -> object:
    return [] if value is None else value


def _none_to_dict(value: object) -> object:
    return {} if value is None else value


class CommonConfig(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    base_dir: str | None = None
    python_executable: str | None = None
    requirements_file: str | None = None
    modules: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    custom_activate_vars: dict[str, str] = Field(default_factory=dict)
    setup_commands: list[str] = Field(default_factory=list)

    @field_validator("modules", "dependencies", "setup_commands", mode="before")
    @classmethod
    def _null_list(cls, value: object) -> object:
        return _none_to_list(value)

    @field_validator("custom_activate_vars", mode="before")
    @classmethod
    def _null_map(cls, value: object) -> object:
        return _none_to_dict(value)


class EnvironmentSpec(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    name: str
    target_machines: list[str] | None = None
    python_executable: str | None = None
    modules: list[str] = Field(default_factory=list)
    modules_file: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    requirements_file: str | None = None
    description: str | None = None
    custom_activate_vars: dict[str, str] = Field(default_factory=dict)
    setup_commands: list[str] = Field(default_factory=list)

    @field_validator("target_machines", mode="before")
    @classmethod
    def _single_target(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("modules", "dependencies", "setup_commands", mode="before")
    @classmethod
    def _null_list(cls, value: object) -> object:
        return _none_to_list(value)

    @field_validator("custom_activate_vars", mode="before")
    @classmethod
    def _null_map(cls, value: object) -> object:
        return _none_to_dict(value)


class EffectiveConfig(BaseModel):
    """Fully merged settings used to set up, register and activate one environment."""

    model_config = ConfigDict(frozen=True)

    name: str
    base_dir: str
    target_machines: list[str]
    python_executable: str
    modules: list[str]
    dependencies: list[str]
    requirements_file: str | None = None
    description: str | None = None
    custom_activate_vars: dict[str, str]
    setup_commands: list[str]


_KNOWN_FIELDS = frozenset(EnvironmentSpec.model_fields) - {"name"}
_KNOWN_COMMON_FIELDS = frozenset(CommonConfig.model_fields)


def merge(
    common: CommonConfig,
    env: EnvironmentSpec,
    *,
    hostname: str | None = None,
    base_dir: str | None = None,
    default_python: str = DEFAULT_PYTHON,
) -> EffectiveConfig:
    """Overlay ``env`` on ``common``.

    Scalars take the environment value when set, lists are concatenated common-first
    and activation variables are overwritten key by key. Targets absent from the
    environment fall back to the cluster of ``hostname``.
    """
    if env.target_machines is not None:
        targets = list(env.target_machines)
    elif hostname:
        targets = [cluster_name(hostname)]
        logger.debug("Environment '%s' has no targets; auto-targeting cluster %s", env.name, targets[0])
    else:
        targets = []
        logger.debug("Environment '%s' has no targets and no hostname; matching any machine", env.name)

    activate_vars = dict(common.custom_activate_vars)
    activate_vars.update(env.custom_activate_vars)

    return EffectiveConfig(
        name=env.name,
        base_dir=base_dir or common.base_dir or "",
        target_machines=targets,
        python_executable=env.python_executable or common.python_executable or default_python,
        modules=[*common.modules, *env.modules],
        dependencies=[*common.dependencies, *env.dependencies],
        requirements_file=env.requirements_file or common.requirements_file,
        description=env.description,
        custom_activate_vars=activate_vars,
        setup_commands=[*common.setup_commands, *env.setup_commands],
    )


@dataclass(frozen=True)
class Configuration:
    path: Path
    base_dir: str
    common: CommonConfig
    environments: dict[str, EnvironmentSpec]

    @property
    def project_dir(self) -> Path:
        return self.path.parent

    def names(self) -> list[str]:
        return list(self.environments)

    def environment(self, name: str) -> EnvironmentSpec:
        try:
            return self.environments[name]
        except KeyError:
            available = ", ".join(self.names()) or "none defined"
            raise EnvironmentNotFound(
                f"Environment '{name}' not found in {self.path.name}",
                hint=f"Use one of: {available}.",
            ) from None

    def resolve(
        self,
        name: str,
        *,
        hostname: str | None = None,
        default_python: str = DEFAULT_PYTHON,
    ) -> EffectiveConfig:
        """Merge ``name`` with the common section.

        An environment with ``modules_file`` takes its module list from that file
        (relative to the project directory) instead of the ``modules`` entries.
        """
        env = self.environment(name)
        effective = merge(
            self.common,
            env,
            hostname=hostname,
            base_dir=self.base_dir,
            default_python=default_python,
        )
        if not env.modules_file:
            return effective
        modules = read_modules_file(self.project_dir / env.modules_file)
        if effective.modules:
            logger.info(
                "Ignoring %s configured module(s) for '%s' in favor of %s",
                len(effective.modules),
                name,
                env.modules_file,
            )
        return effective.model_copy(update={"modules": modules})


def read_modules_file(path: str | Path) -> list[str]:
    """Read one module name per line, skipping blanks, ``#`` comments and repeats."""
    resolved = Path(path)
    try:
        content = resolved.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(
            f"Could not read modules file '{resolved}': {exc}",
            hint="Create the file or fix 'modules_file' in zenv.json.",
        ) from exc
    modules: list[str] = []
    for line in content.splitlines():
        module = line.strip()
        if not module or module.startswith("#") or module in modules:
            continue
        modules.append(module)
    logger.debug("Read %s module(s) from %s", len(modules), resolved)
    return modules


class _DuplicateKey(ValueError):
    pass


def _reject_duplicates(pairs: list[tuple[str, object]]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in pairs:
        if key in result:
            raise _DuplicateKey(key)
        result[key] = value
    return result


def _format_validation_error(section: str, exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or section
        problems.append(f"'{location}': {error['msg']}")
    return f"Invalid {section}: " + "; ".join(problems)


def _warn_unknown(section: str, raw: dict[str, object], known: frozenset[str]) -> None:
    for key in raw:
        if key not in known:
            logger.warning("Ignoring unknown field '%s' in %s", key, section)


def _parse_common(raw: object) -> CommonConfig:
    if not isinstance(raw, dict):
        raise ConfigSchemaInvalid(
            f"The '{COMMON_KEY}' section must be an object",
            hint=f"Add a '{COMMON_KEY}' object with base_dir and requirements_file.",
        )
    _warn_unknown(f"section '{COMMON_KEY}'", raw, _KNOWN_COMMON_FIELDS)
    try:
        return CommonConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigSchemaInvalid(
            _format_validation_error(f"section '{COMMON_KEY}'", exc),
            hint="Fix the listed fields; strings, string lists and string maps are expected.",
        ) from exc


def _check_environment_name(name: str) -> None:
    # The name becomes the last component of the venv path.
    if name.strip() in ("", ".", "..") or "/" in name or os.sep in name:
        raise ConfigSchemaInvalid(
            f"Invalid environment name '{name}'",
            hint="Use a plain directory name without path separators, '.' or '..'.",
        )


def _parse_environment(name: str, raw: object) -> EnvironmentSpec:
    _check_environment_name(name)
    if not isinstance(raw, dict):
        raise ConfigSchemaInvalid(
            f"Environment '{name}' must be an object",
            hint="Describe each environment as a JSON object.",
        )
    payload = dict(raw)
    if _LEGACY_TARGET_KEY in payload and "target_machines" not in payload:
        payload["target_machines"] = payload.pop(_LEGACY_TARGET_KEY)
    _warn_unknown(f"environment '{name}'", payload, _KNOWN_FIELDS)
    payload["name"] = name
    try:
        return EnvironmentSpec.model_validate(payload)
    except ValidationError as exc:
        raise ConfigSchemaInvalid(
            _format_validation_error(f"environment '{name}'", exc),
            hint="Fix the listed fields; strings, string lists and string maps are expected.",
        ) from exc


def parse_document(document: object, path: Path) -> Configuration:
    if not isinstance(document, dict):
        raise ConfigSchemaInvalid(
            f"Root element of {path.name} must be an object",
            hint="Wrap the configuration in a JSON object.",
        )

    if COMMON_KEY not in document:
        raise ConfigSchemaInvalid(
            f"Missing required '{COMMON_KEY}' section in {path.name}",
            hint="Run 'zenv init' in an empty directory to see a template.",
        )
    common = _parse_common(document[COMMON_KEY])

    top_base_dir = document.get(BASE_DIR_KEY)
    if top_base_dir is not None and not isinstance(top_base_dir, str):
        raise ConfigSchemaInvalid(
            f"'{BASE_DIR_KEY}' must be a string",
            hint="Use a relative or absolute directory path.",
        )
    base_dir = top_base_dir or common.base_dir
    if not base_dir:
        raise ConfigSchemaInvalid(
            f"Missing required '{COMMON_KEY}.base_dir'",
            hint="Set the directory that holds the virtual environments, e.g. \"zenv\".",
        )
    if not common.requirements_file:
        raise ConfigSchemaInvalid(
            f"Missing required '{COMMON_KEY}.requirements_file'",
            hint="Name the default requirements file, e.g. \"requirements.txt\".",
        )
    if Path(base_dir).is_absolute():
        logger.info("Using absolute virtual environment base directory: %s", base_dir)

    environments: dict[str, EnvironmentSpec] = {}
    for name, raw in document.items():
        if name in RESERVED_KEYS:
            continue
        environments[name] = _parse_environment(name, raw)

    logger.debug("Parsed %s environment(s) from %s", len(environments), path)
    return Configuration(path=path, base_dir=base_dir, common=common, environments=environments)


def parse(path: str | Path | None = None) -> Configuration:
    resolved = Path(path) if path is not None else Path.cwd() / CONFIG_FILENAME
    resolved = resolved.expanduser().absolute()
    if not resolved.is_file():
        raise ConfigNotFound(
            f"Configuration file '{resolved}' not found",
            hint="Run 'zenv init' to create one, or change to the project directory.",
        )
    try:
        content = resolved.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(
            f"Could not read configuration file '{resolved}': {exc}",
            hint="Check the file permissions and encoding.",
        ) from exc
    try:
        document = json.loads(content, object_pairs_hook=_reject_duplicates)
    except _DuplicateKey as exc:
        raise ConfigSchemaInvalid(
            f"Duplicate key '{exc}' in {resolved.name}",
            hint="Environment names and field names must be unique.",
        ) from exc
    except json.JSONDecodeError as exc:
        raise JsonInvalid(
            f"Invalid JSON in {resolved.name} at line {exc.lineno}, column {exc.colno}: {exc.msg}",
            hint="Fix the JSON syntax.",
        ) from exc
    return parse_document(document, resolved)


def write_template(path: str | Path) -> Path:
    resolved = Path(path)
    try:
        resolved.write_text(json.dumps(TEMPLATE, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ZenvError(
            f"Could not write '{resolved}': {exc}",
            code=ExitCode.IO_ERROR,
            hint="Check the permissions of the project directory.",
        ) from exc
    return resolved
