"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    REGISTRY_ERROR = 5
    PROCESS_ERROR = 6
    VALIDATION_ERROR = 7
    HOSTNAME_ERROR = 8
    IO_ERROR = 9


@dataclass
class ZenvError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class ConfigNotFound(ZenvError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class ConfigReadError(ZenvError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class JsonInvalid(ZenvError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class ConfigSchemaInvalid(ZenvError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class EnvironmentNotFound(ZenvError):
    code: ExitCode = ExitCode.CONFIG_ERROR


@dataclass
class TargetMismatch(ZenvError):
    code: ExitCode = ExitCode.VALIDATION_ERROR


@dataclass
class MissingHostname(ZenvError):
    code: ExitCode = ExitCode.HOSTNAME_ERROR


@dataclass
class IdentifierNotFound(ZenvError):
    code: ExitCode = ExitCode.REGISTRY_ERROR


@dataclass
class AmbiguousIdentifier(ZenvError):
    code: ExitCode = ExitCode.REGISTRY_ERROR
    candidates: list[str] = field(default_factory=list)


@dataclass
class RegistryIOError(ZenvError):
    code: ExitCode = ExitCode.IO_ERROR


@dataclass
class RegistryFormatError(ZenvError):
    code: ExitCode = ExitCode.IO_ERROR


@dataclass
class ProcessFailure(ZenvError):
    code: ExitCode = ExitCode.PROCESS_ERROR
    command: str = ""
    returncode: int | None = None


@dataclass
class ModuleLoadError(ProcessFailure):
    module: str = ""


def user_facing_error(message: str, *, hint: str = "") -> str:
    message = message.rstrip(".")
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
