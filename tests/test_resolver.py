from __future__ import annotations

from pathlib import Path

import pytest

from zenv.errors import AmbiguousIdentifier, ExitCode, IdentifierNotFound
from zenv.registry import EnvironmentRegistry
from zenv.resolver import resolve

FIRST_ID = "abc1234a" + "0" * 32
SECOND_ID = "abc1234b" + "1" * 32
THIRD_ID = "fed9876" + "2" * 33


@pytest.fixture
def populated(registry: EnvironmentRegistry, make_entry) -> EnvironmentRegistry:
    registry.entries = [
        make_entry(FIRST_ID, "gpu"),
        make_entry(SECOND_ID, "cpu"),
        make_entry(THIRD_ID, "io", "/work/other"),
    ]
    return registry


def test_exact_name_resolves(populated: EnvironmentRegistry) -> None:
    assert resolve(populated, "cpu").id == SECOND_ID


def test_exact_full_id_resolves(populated: EnvironmentRegistry) -> None:
    assert resolve(populated, FIRST_ID).env_name == "gpu"


def test_unique_prefix_resolves(populated: EnvironmentRegistry) -> None:
    assert resolve(populated, "abc1234a").env_name == "gpu"
    assert resolve(populated, "fed9876").env_name == "io"


def test_shared_prefix_is_ambiguous_and_lists_names(populated: EnvironmentRegistry) -> None:
    with pytest.raises(AmbiguousIdentifier) as excinfo:
        resolve(populated, "abc1234")

    assert excinfo.value.code == ExitCode.REGISTRY_ERROR
    assert sorted(excinfo.value.candidates) == ["cpu", "gpu"]
    assert "gpu" in excinfo.value.message and "cpu" in excinfo.value.message
    assert "more characters" in excinfo.value.hint


def test_short_identifier_never_prefix_matches(populated: EnvironmentRegistry) -> None:
    with pytest.raises(IdentifierNotFound) as excinfo:
        resolve(populated, "abc123")

    assert "zenv list" in excinfo.value.hint


def test_unknown_identifier_is_not_found(populated: EnvironmentRegistry) -> None:
    with pytest.raises(IdentifierNotFound):
        resolve(populated, "0000000")
    with pytest.raises(IdentifierNotFound):
        resolve(populated, "   ")


def test_name_takes_precedence_over_id_prefix(populated: EnvironmentRegistry, make_entry) -> None:
    populated.entries.append(make_entry("9" * 40, "abc1234"))

    assert resolve(populated, "abc1234").id == "9" * 40


def test_exact_id_short_circuits_prefix_search(registry: EnvironmentRegistry, make_entry) -> None:
    registry.entries = [make_entry(FIRST_ID, "gpu"), make_entry(FIRST_ID[:39] + "f", "gpu-copy")]

    assert resolve(registry, FIRST_ID).env_name == "gpu"


def test_duplicate_names_prefer_current_project(registry: EnvironmentRegistry, make_entry, tmp_path: Path) -> None:
    here = tmp_path / "here"
    elsewhere = tmp_path / "elsewhere"
    registry.entries = [
        make_entry(FIRST_ID, "dev", str(elsewhere)),
        make_entry(SECOND_ID, "dev", str(here)),
    ]

    assert resolve(registry, "dev", cwd=here).id == SECOND_ID
    with pytest.raises(AmbiguousIdentifier) as excinfo:
        resolve(registry, "dev", cwd=tmp_path)
    assert excinfo.value.candidates == ["dev", "dev"]


def test_dot_resolves_current_project(registry: EnvironmentRegistry, make_entry, tmp_path: Path) -> None:
    registry.entries = [
        make_entry(FIRST_ID, "dev", str(tmp_path / "a")),
        make_entry(SECOND_ID, "gpu", str(tmp_path / "b")),
        make_entry(THIRD_ID, "cpu", str(tmp_path / "b")),
    ]

    assert resolve(registry, ".", cwd=tmp_path / "a").env_name == "dev"
    with pytest.raises(AmbiguousIdentifier):
        resolve(registry, ".", cwd=tmp_path / "b")
    with pytest.raises(IdentifierNotFound) as excinfo:
        resolve(registry, ".", cwd=tmp_path / "c")
    assert "zenv setup" in excinfo.value.hint
