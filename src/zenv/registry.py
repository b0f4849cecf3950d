"""Durable, ID-addressable registry of set-up environments."""

from __future__ import annotations

import hashlib
import json
import logging as py_logging
import os
import secrets
import tempfile
import time
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from typing_extensions import NotRequired, TypedDict

from zenv.errors import IdentifierNotFound, RegistryFormatError, RegistryIOError
from zenv.matching import join_target_patterns, split_target_string
from zenv.paths import registry_path
from zenv.resolver import resolve

logger = py_logging.getLogger(__name__)

LEGACY_BASE_DIR = "zenv"


class RegistryRecord(TypedDict):
    id: str
    name: str
    project_dir: str
    venv_path: str
    target_machines: str
    description: NotRequired[str]


class RegistryEntry(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    env_name: str
    project_dir: str
    venv_path: str
    target_machines: str
    description: str | None = None

    @property
    def short_id(self) -> str:
        return self.id[:7]

    @property
    def target_patterns(self) -> list[str]:
        return split_target_string(self.target_machines)

    def to_dict(self) -> RegistryRecord:
        payload: RegistryRecord = {
            "id": self.id,
            "name": self.env_name,
            "project_dir": self.project_dir,
            "venv_path": self.venv_path,
            "target_machines": self.target_machines,
        }
        if self.description is not None:
            payload["description"] = self.description
        return payload


def generate_id(env_name: str, project_dir: str, target_machines: str) -> str:
    digest = hashlib.sha1()
    for part in (env_name, project_dir, target_machines, str(time.time_ns()), secrets.token_hex(8)):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def venv_path_for(project_dir: str | Path, base_dir: str, env_name: str) -> Path:
    base = Path(base_dir).expanduser()
    if base.is_absolute():
        return base / env_name
    return Path(project_dir) / base / env_name


def _required_string(raw: dict[str, object], key: str, index: int) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise RegistryFormatError(
            f"Registry entry #{index} has a missing or invalid '{key}' field",
            hint="Repair or remove the entry in the registry file.",
        )
    return value


def _parse_entry(raw: object, index: int) -> tuple[RegistryEntry, bool]:
    if not isinstance(raw, dict):
        raise RegistryFormatError(
            f"Registry entry #{index} is not an object",
            hint="Repair or remove the entry in the registry file.",
        )
    env_name = _required_string(raw, "name", index)
    project_dir = _required_string(raw, "project_dir", index)
    targets = raw.get("target_machines", raw.get("target_machine"))
    if isinstance(targets, list) and all(isinstance(item, str) for item in targets):
        targets = join_target_patterns(targets)
    if not isinstance(targets, str):
        raise RegistryFormatError(
            f"Registry entry #{index} ('{env_name}') has invalid target machines",
            hint="Repair or remove the entry in the registry file.",
        )

    repaired = False
    entry_id = raw.get("id")
    if not isinstance(entry_id, str) or not entry_id:
        entry_id = generate_id(env_name, project_dir, targets)
        logger.info("Generated new ID for registry entry '%s'", env_name)
        repaired = True

    venv = raw.get("venv_path")
    if not isinstance(venv, str) or not venv:
        venv = str(venv_path_for(project_dir, LEGACY_BASE_DIR, env_name))
        logger.info("Reconstructed venv path for registry entry '%s': %s", env_name, venv)
        repaired = True

    description = raw.get("description")
    entry = RegistryEntry(
        id=entry_id,
        env_name=env_name,
        project_dir=project_dir,
        venv_path=venv,
        target_machines=targets,
        description=description if isinstance(description, str) else None,
    )
    return entry, repaired


class EnvironmentRegistry:
    """In-memory registry backed by a single JSON file.

    Loaded once per process and passed explicitly to whatever needs it. Mutations
    only touch memory; callers persist them with :meth:`save`.
    """

    def __init__(self, path: str | Path | None = None, entries: list[RegistryEntry] | None = None) -> None:
        self.path = Path(path) if path is not None else registry_path()
        self.entries: list[RegistryEntry] = list(entries or [])
        self.repaired = False

    @classmethod
    def load(cls, path: str | Path | None = None) -> EnvironmentRegistry:
        registry = cls(path)
        if not registry.path.exists():
            logger.debug("Registry file %s does not exist; starting empty", registry.path)
            return registry
        try:
            content = registry.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise RegistryIOError(
                f"Could not read registry file '{registry.path}': {exc}",
                hint="Check the permissions of the zenv directory.",
            ) from exc
        try:
            document = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as exc:
            raise RegistryFormatError(
                f"Registry file '{registry.path}' is not valid JSON: {exc.msg} (line {exc.lineno})",
                hint="Repair the file or move it aside to start with an empty registry.",
            ) from exc
        if not isinstance(document, dict):
            raise RegistryFormatError(
                f"Registry file '{registry.path}' must contain a JSON object",
                hint="Repair the file or move it aside to start with an empty registry.",
            )
        environments = document.get("environments", [])
        if not isinstance(environments, list):
            raise RegistryFormatError(
                f"'environments' in '{registry.path}' must be an array",
                hint="Repair the file or move it aside to start with an empty registry.",
            )

        seen_ids: set[str] = set()
        for index, raw in enumerate(environments):
            entry, repaired = _parse_entry(raw, index)
            if entry.id in seen_ids:
                raise RegistryFormatError(
                    f"Duplicate registry ID '{entry.id}' for '{entry.env_name}'",
                    hint="Remove one of the duplicated entries from the registry file.",
                )
            seen_ids.add(entry.id)
            registry.entries.append(entry)
            registry.repaired = registry.repaired or repaired
        logger.debug("Loaded %s registry entries from %s", len(registry.entries), registry.path)
        return registry

    def to_document(self) -> dict[str, list[RegistryRecord]]:
        return {"environments": [entry.to_dict() for entry in self.entries]}

    def save(self) -> Path:
        payload = json.dumps(self.to_document(), indent=2, ensure_ascii=False) + "\n"
        tmp_name = ""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name:
                with suppress(OSError):
                    os.unlink(tmp_name)
            raise RegistryIOError(
                f"Could not write registry file '{self.path}': {exc}",
                hint="Check the permissions and free space of the zenv directory.",
            ) from exc
        self.repaired = False
        logger.debug("Saved %s registry entries to %s", len(self.entries), self.path)
        return self.path

    def ids(self) -> set[str]:
        return {entry.id for entry in self.entries}

    def lookup(self, identifier: str) -> RegistryEntry | None:
        for entry in self.entries:
            if entry.id == identifier or entry.env_name == identifier:
                return entry
        return None

    def find(self, env_name: str, project_dir: str | Path) -> RegistryEntry | None:
        wanted = str(project_dir)
        return next(
            (entry for entry in self.entries if entry.env_name == env_name and entry.project_dir == wanted),
            None,
        )

    def for_project(self, project_dir: str | Path) -> list[RegistryEntry]:
        wanted = str(project_dir)
        return [entry for entry in self.entries if entry.project_dir == wanted]

    def _fresh_id(self, env_name: str, project_dir: str, targets: str) -> str:
        existing = self.ids()
        entry_id = generate_id(env_name, project_dir, targets)
        while entry_id in existing:
            entry_id = generate_id(env_name, project_dir, targets)
        return entry_id

    def register(
        self,
        env_name: str,
        project_dir: str | Path,
        base_dir: str,
        description: str | None = None,
        target_patterns: list[str] | None = None,
    ) -> RegistryEntry:
        """Record an environment, updating in place when (name, project dir) is already known."""
        project = str(Path(project_dir).expanduser().absolute())
        venv = str(venv_path_for(project, base_dir, env_name))
        targets = join_target_patterns(target_patterns or [])

        existing = self.find(env_name, project)
        if existing is not None:
            existing.venv_path = venv
            existing.target_machines = targets
            existing.description = description
            logger.info("Updated registry entry '%s' (%s)", env_name, existing.short_id)
            return existing

        entry = RegistryEntry(
            id=self._fresh_id(env_name, project, targets),
            env_name=env_name,
            project_dir=project,
            venv_path=venv,
            target_machines=targets,
            description=description,
        )
        self.entries.append(entry)
        logger.info("Registered environment '%s' (%s)", env_name, entry.short_id)
        return entry

    def remove(self, entry: RegistryEntry) -> None:
        self.entries = [item for item in self.entries if item.id != entry.id]

    def deregister(self, identifier: str, *, cwd: str | Path | None = None) -> bool:
        try:
            entry = resolve(self, identifier, cwd=cwd)
        except IdentifierNotFound:
            logger.debug("Nothing to deregister for identifier '%s'", identifier)
            return False
        self.remove(entry)
        logger.info("Deregistered environment '%s' (%s)", entry.env_name, entry.short_id)
        return True
