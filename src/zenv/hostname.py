"""Current-machine hostname discovery and cluster-name derivation."""

from __future__ import annotations

import logging as py_logging
import os
import subprocess
from collections.abc import Callable, Mapping
from typing import Protocol

from zenv.errors import MissingHostname
from zenv.matching import normalize_hostname

logger = py_logging.getLogger(__name__)

HOSTNAME_ENV_VARS = ("HOSTNAME", "HOST")
_COMMAND_TIMEOUT_SECONDS = 5.0


class SubprocessRunner(Protocol):
    def __call__(
        self,
        args: list[str],
        *,
        capture_output: bool = False,
        text: bool = False,
        check: bool = False,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]: ...


HostnameProvider = Callable[[], str]


def _hostname_from_command(runner: SubprocessRunner) -> str:
    try:
        completed = runner(
            ["hostname"],
            capture_output=True,
            text=True,
            check=False,
            timeout=_COMMAND_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("hostname command unavailable: %s", exc)
        return ""
    if completed.returncode != 0:
        logger.debug(
            "hostname command failed returncode=%s stderr=%s",
            completed.returncode,
            (completed.stderr or "").strip(),
        )
        return ""
    return (completed.stdout or "").strip()


def current_hostname(
    *,
    environ: Mapping[str, str] | None = None,
    runner: SubprocessRunner = subprocess.run,
) -> str:
    env = os.environ if environ is None else environ
    for name in HOSTNAME_ENV_VARS:
        value = env.get(name, "").strip()
        if value:
            logger.debug("Using hostname from %s: %s", name, value)
            return value
        logger.debug("%s is unset or empty", name)

    value = _hostname_from_command(runner)
    if value:
        logger.debug("Using hostname from command: %s", value)
        return value

    raise MissingHostname(
        "Could not determine the current hostname",
        hint="Set HOSTNAME, or pass --no-host to skip the target machine check.",
    )


def cluster_name(hostname: str) -> str:
    """Derive the logical cluster label used when an environment names no targets.

    ``node.cluster.domain`` gives ``cluster``, ``node.cluster`` gives ``cluster`` and a
    bare ``node`` is its own cluster.
    """
    normalized = normalize_hostname(hostname)
    labels = normalized.split(".")
    if len(labels) > 2:
        return labels[1]
    if len(labels) == 2:
        return normalized.split(".", 1)[1]
    return normalized
