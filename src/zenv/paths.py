"""Locations of per-user zenv state."""

from __future__ import annotations

import os
from pathlib import Path

ZENV_DIR_ENV = "ZENV_DIR"
DEFAULT_ZENV_DIR = Path("~/.zenv")
REGISTRY_FILENAME = "registry.json"
SETTINGS_FILENAME = "settings.toml"
CONFIG_FILENAME = "zenv.json"


def zenv_dir() -> Path:
    override = os.getenv(ZENV_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return DEFAULT_ZENV_DIR.expanduser()


def registry_path() -> Path:
    return zenv_dir() / REGISTRY_FILENAME


def settings_path() -> Path:
    return zenv_dir() / SETTINGS_FILENAME


def log_path() -> Path:
    return zenv_dir() / "logs" / "zenv.log"


def project_config_path(project_dir: str | Path | None = None) -> Path:
    base = Path(project_dir) if project_dir is not None else Path.cwd()
    return base / CONFIG_FILENAME
