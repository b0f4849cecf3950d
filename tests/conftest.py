from __future__ import annotations

import json
import logging as py_logging
from pathlib import Path

import pytest

from zenv.registry import EnvironmentRegistry, RegistryEntry

_HOSTNAME_VARS = ("HOSTNAME", "HOST", "ZENV_DEBUG")


@pytest.fixture(autouse=True)
def isolated_zenv_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    zenv_dir = tmp_path / "zenv-home"
    monkeypatch.setenv("ZENV_DIR", str(zenv_dir))
    for name in _HOSTNAME_VARS:
        monkeypatch.delenv(name, raising=False)
    return zenv_dir


@pytest.fixture(autouse=True)
def reset_zenv_logger():
    yield
    logger = py_logging.getLogger("zenv")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(py_logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def write_config(project_dir: Path):
    def _write(document: dict[str, object]) -> Path:
        path = project_dir / "zenv.json"
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    return _write


def _make_entry(
    entry_id: str,
    name: str,
    project_dir: str = "/work/project",
    *,
    targets: str = "any",
) -> RegistryEntry:
    return RegistryEntry(
        id=entry_id,
        env_name=name,
        project_dir=project_dir,
        venv_path=f"{project_dir}/zenv/{name}",
        target_machines=targets,
    )


@pytest.fixture
def make_entry():
    return _make_entry


@pytest.fixture
def registry(isolated_zenv_dir: Path) -> EnvironmentRegistry:
    return EnvironmentRegistry(isolated_zenv_dir / "registry.json")


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)
