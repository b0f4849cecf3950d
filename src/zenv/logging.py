"""Application logging helpers."""

from __future__ import annotations

import logging as py_logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

from zenv.paths import log_path

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEBUG_ENV = "ZENV_DEBUG"
_FALLBACK_LOG_PATH = Path(".zenv/logs/zenv.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"
_STREAM_FORMAT = "%(levelname)s %(message)s"


def debug_enabled() -> bool:
    return os.getenv(DEBUG_ENV, "").strip().lower() in {"1", "true", "yes"}


def default_log_path() -> Path:
    try:
        resolved = log_path()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    normalized = level.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if debug_enabled():
        normalized = "DEBUG"
    resolved = LOG_LEVELS.get(normalized, py_logging.INFO)

    logger = py_logging.getLogger("zenv")
    logger.setLevel(py_logging.DEBUG if log_file else resolved)
    for existing in list(logger.handlers):
        existing.close()
    logger.handlers.clear()

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(py_logging.Formatter(_STREAM_FORMAT))
    logger.addHandler(handler)

    if log_file:
        try:
            file_path = Path(log_file).expanduser()
        except RuntimeError:
            file_path = Path(log_file)
        if not file_path.is_absolute():
            file_path = file_path.resolve()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = py_logging.FileHandler(file_path, encoding="utf-8")
        except OSError:
            logger.setLevel(resolved)
        else:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(py_logging.Formatter(_FORMAT))
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger


@contextmanager
def capture_to_file(path: str | Path) -> Iterator[Path | None]:
    """Copy every ``zenv`` record emitted inside the block to ``path``.

    Yields the log path, or ``None`` when the file cannot be opened.
    """
    logger = py_logging.getLogger("zenv")
    file_path = Path(path)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(file_path, mode="w", encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not open log file %s: %s", file_path, exc)
        yield None
        return

    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(py_logging.Formatter(_FORMAT))
    previous_level = logger.level
    logger.setLevel(py_logging.DEBUG)
    logger.addHandler(handler)
    try:
        yield file_path
    finally:
        logger.removeHandler(handler)
        handler.close()
        logger.setLevel(previous_level)
