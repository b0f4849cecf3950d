from __future__ import annotations

from pathlib import Path

import pytest

from zenv.config import EffectiveConfig
from zenv.errors import ConfigReadError, ConfigSchemaInvalid, ExitCode, MissingHostname, TargetMismatch
from zenv.validation import (
    is_eligible,
    package_name,
    read_requirements,
    require_eligible,
    validate,
    validate_dependencies,
)


def _effective(**overrides: object) -> EffectiveConfig:
    values: dict[str, object] = {
        "name": "dev",
        "base_dir": "zenv",
        "target_machines": ["jureca"],
        "python_executable": "python3",
        "modules": [],
        "dependencies": [],
        "custom_activate_vars": {},
        "setup_commands": [],
    }
    values.update(overrides)
    return EffectiveConfig(**values)


def test_validate_accepts_complete_config() -> None:
    effective = _effective(modules=["GCC"], custom_activate_vars={"OMP_NUM_THREADS": "4"})

    assert validate(effective) is effective


@pytest.mark.parametrize(
    "overrides",
    [
        {"python_executable": ""},
        {"python_executable": "   "},
        {"base_dir": ""},
        {"modules": ["GCC", ""]},
        {"dependencies": [" "]},
        {"setup_commands": [""]},
        {"custom_activate_vars": {"1BAD": "x"}},
        {"custom_activate_vars": {"WITH SPACE": "x"}},
    ],
)
def test_validate_rejects_incomplete_config(overrides: dict[str, object]) -> None:
    with pytest.raises(ConfigSchemaInvalid) as excinfo:
        validate(_effective(**overrides))

    assert excinfo.value.code == ExitCode.CONFIG_ERROR


def test_is_eligible_uses_target_patterns() -> None:
    assert is_eligible(_effective(), "login03.jureca.fz-juelich.de")
    assert not is_eligible(_effective(target_machines=["jrlogin*"]), "login03.jureca.fz-juelich.de")
    assert is_eligible(_effective(target_machines=[]), "anything")


def test_require_eligible_passes_on_matching_host() -> None:
    require_eligible(_effective(), lambda: "jrlogin08.jureca")


def test_require_eligible_raises_target_mismatch() -> None:
    with pytest.raises(TargetMismatch) as excinfo:
        require_eligible(_effective(), lambda: "juwels01.juwels")

    assert excinfo.value.code == ExitCode.VALIDATION_ERROR
    assert "--no-host" in excinfo.value.hint
    assert "juwels01.juwels" in excinfo.value.message


def test_bypass_skips_hostname_lookup_and_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    def no_hostname() -> str:
        raise MissingHostname("Could not determine the current hostname")

    with caplog.at_level("WARNING", logger="zenv"):
        require_eligible(_effective(), no_hostname, bypass=True)

    assert "--no-host" in caplog.text


def test_missing_hostname_propagates_without_bypass() -> None:
    def no_hostname() -> str:
        raise MissingHostname("Could not determine the current hostname")

    with pytest.raises(MissingHostname):
        require_eligible(_effective(), no_hostname)


def test_read_requirements_txt(tmp_path: Path) -> None:
    path = tmp_path / "requirements.txt"
    path.write_text(
        "# pinned stack\nnumpy>=1.26\n\n-r base.txt\n--index-url https://example.invalid\nscipy  # solver\n",
        encoding="utf-8",
    )

    assert read_requirements(path) == ["numpy>=1.26", "scipy"]


def test_read_requirements_from_pyproject(tmp_path: Path) -> None:
    path = tmp_path / "pyproject.toml"
    path.write_text(
        '[project]\nname = "demo"\ndependencies = ["numpy>=1.26", "pandas"]\n',
        encoding="utf-8",
    )

    assert read_requirements(path) == ["numpy>=1.26", "pandas"]


def test_read_requirements_pyproject_without_dependencies(tmp_path: Path) -> None:
    path = tmp_path / "pyproject.toml"
    path.write_text('[tool.other]\nkey = "value"\n', encoding="utf-8")

    assert read_requirements(path) == []


def test_read_requirements_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigReadError):
        read_requirements(tmp_path / "missing.txt")

    broken = tmp_path / "pyproject.toml"
    broken.write_text("[project\n", encoding="utf-8")
    with pytest.raises(ConfigReadError):
        read_requirements(broken)


def test_validate_dependencies_filters_and_deduplicates(caplog: pytest.LogCaptureFixture) -> None:
    raw = ["numpy>=1.26", "", "./local/pkg", "NumPy==2.0", "scipy[all]", "bad;pkg", "123", "torch ~= 2.1"]

    with caplog.at_level("WARNING", logger="zenv"):
        result = validate_dependencies(raw)

    assert result == ["numpy>=1.26", "scipy[all]", "torch ~= 2.1"]
    assert "duplicate" in caplog.text
    assert "path" in caplog.text


@pytest.mark.parametrize(
    ("dependency", "expected"),
    [
        ("NumPy>=1.26", "numpy"),
        ("scipy[all]", "scipy"),
        ("torch ~= 2.1", "torch"),
        ("pandas", "pandas"),
        ("requests!=2.0", "requests"),
    ],
)
def test_package_name(dependency: str, expected: str) -> None:
    assert package_name(dependency) == expected
