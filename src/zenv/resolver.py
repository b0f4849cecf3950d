"""Resolve user-supplied names and (partial) IDs to registry entries."""

from __future__ import annotations

import logging as py_logging
from pathlib import Path
from typing import TYPE_CHECKING

from zenv.errors import AmbiguousIdentifier, IdentifierNotFound

if TYPE_CHECKING:
    from zenv.registry import EnvironmentRegistry, RegistryEntry

logger = py_logging.getLogger(__name__)

ID_LENGTH = 40
PARTIAL_ID_MIN = 7
CURRENT_PROJECT = "."


def _not_found(identifier: str) -> IdentifierNotFound:
    return IdentifierNotFound(
        f"Environment with name or ID '{identifier}' not found in registry",
        hint="Run 'zenv list --all' to see registered environments and their IDs.",
    )


def _describe(entry: RegistryEntry) -> str:
    return f"{entry.env_name} ({entry.short_id}, {entry.project_dir})"


def _same_dir(left: str, right: str | Path) -> bool:
    return Path(left).resolve() == Path(right).resolve()


def _resolve_current_project(registry: EnvironmentRegistry, cwd: str | Path) -> RegistryEntry:
    matching = [entry for entry in registry.entries if _same_dir(entry.project_dir, cwd)]
    if not matching:
        raise IdentifierNotFound(
            f"No registered environments found for '{cwd}'",
            hint="Run 'zenv setup <env_name>' or 'zenv register <env_name>' here first.",
        )
    if len(matching) > 1:
        raise AmbiguousIdentifier(
            f"Multiple environments are registered for '{cwd}': "
            + ", ".join(_describe(entry) for entry in matching),
            hint="Specify the environment name or ID explicitly.",
            candidates=[entry.env_name for entry in matching],
        )
    return matching[0]


def resolve(
    registry: EnvironmentRegistry,
    identifier: str,
    *,
    cwd: str | Path | None = None,
) -> RegistryEntry:
    """Return the single entry ``identifier`` designates.

    Exact names win first, then exact IDs, then unique ID prefixes of at least
    ``PARTIAL_ID_MIN`` characters. ``"."`` designates the environment registered for
    ``cwd``.
    """
    identifier = identifier.strip()
    if not identifier:
        raise _not_found(identifier)

    if identifier == CURRENT_PROJECT:
        return _resolve_current_project(registry, cwd if cwd is not None else Path.cwd())

    by_name = [entry for entry in registry.entries if entry.env_name == identifier]
    if len(by_name) == 1:
        return by_name[0]
    if len(by_name) > 1:
        if cwd is not None:
            local = [entry for entry in by_name if _same_dir(entry.project_dir, cwd)]
            if len(local) == 1:
                return local[0]
        raise AmbiguousIdentifier(
            f"Name '{identifier}' is registered for several projects: "
            + ", ".join(_describe(entry) for entry in by_name),
            hint="Use the environment ID instead; 'zenv list --all' shows them.",
            candidates=[entry.env_name for entry in by_name],
        )

    for entry in registry.entries:
        if entry.id == identifier:
            return entry

    if not PARTIAL_ID_MIN <= len(identifier) < ID_LENGTH:
        raise _not_found(identifier)

    by_prefix = [entry for entry in registry.entries if entry.id.startswith(identifier)]
    if not by_prefix:
        raise _not_found(identifier)
    if len(by_prefix) > 1:
        logger.debug("ID prefix '%s' matched %s entries", identifier, len(by_prefix))
        raise AmbiguousIdentifier(
            f"Ambiguous ID prefix '{identifier}' matches multiple environments: "
            + ", ".join(entry.env_name for entry in by_prefix),
            hint="Use more characters to make the ID unique.",
            candidates=[entry.env_name for entry in by_prefix],
        )
    return by_prefix[0]
