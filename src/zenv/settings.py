"""User-level settings loaded from ``$ZENV_DIR/settings.toml``."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from zenv.paths import settings_path

logger = py_logging.getLogger(__name__)

DEFAULT_PYTHON = "python3"
DEFAULT_LOG_LEVEL = "INFO"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


class Settings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    default_python: str = DEFAULT_PYTHON
    log_level: str = DEFAULT_LOG_LEVEL
    list_all: bool = False

    @field_validator("default_python")
    @classmethod
    def _validate_python(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("default_python must not be empty")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized


def get_settings_path(path: str | Path | None = None) -> Path:
    if path is None:
        return settings_path()
    return Path(path).expanduser()


def _sanitize(raw: dict[str, object]) -> Settings:
    settings = Settings()

    default_python = raw.get("default_python")
    if isinstance(default_python, str) and default_python.strip():
        settings.default_python = default_python

    log_level = raw.get("log_level")
    if isinstance(log_level, str) and log_level.strip().upper() in _VALID_LOG_LEVELS:
        settings.log_level = log_level

    list_all = raw.get("list_all")
    if isinstance(list_all, bool):
        settings.list_all = list_all

    return settings


def load_settings(path: str | Path | None = None) -> Settings:
    resolved = get_settings_path(path)
    if not resolved.exists():
        return Settings()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", resolved, exc)
        return Settings()
    return _sanitize(raw)
