from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path


def _env(zenv_dir: Path) -> dict[str, str]:
    env = dict(os.environ)
    existing = env.get("PYTHONPATH", "")
    src_path = str(Path(__file__).resolve().parents[2] / "src")
    env["PYTHONPATH"] = f"{src_path}{os.pathsep}{existing}" if existing else src_path
    env["ZENV_DIR"] = str(zenv_dir)
    env["HOSTNAME"] = "jrlogin08.jureca"
    return env


def _zenv(*args: str, cwd: Path, zenv_dir: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "zenv", *args],
        capture_output=True,
        text=True,
        check=False,
        cwd=cwd,
        env=_env(zenv_dir),
    )


def test_cli_module_reports_invalid_args_via_exit_code(tmp_path: Path) -> None:
    completed = _zenv("--log-level", "LOUD", "list", cwd=tmp_path, zenv_dir=tmp_path / "home")

    assert completed.returncode == 2
    assert "--log-level must be one of" in completed.stderr


def test_init_register_list_deregister_round_trip(tmp_path: Path) -> None:
    zenv_dir = tmp_path / "home"
    project = tmp_path / "project"
    project.mkdir()

    assert _zenv("init", cwd=project, zenv_dir=zenv_dir).returncode == 0
    assert _zenv("validate", cwd=project, zenv_dir=zenv_dir).returncode == 0
    assert _zenv("register", "default", cwd=project, zenv_dir=zenv_dir).returncode == 0

    listed = _zenv("list", cwd=tmp_path, zenv_dir=zenv_dir)
    assert listed.returncode == 0
    assert "default" in listed.stdout

    registry = json.loads((zenv_dir / "registry.json").read_text(encoding="utf-8"))
    entry_id = registry["environments"][0]["id"]

    assert _zenv("deregister", entry_id[:7], cwd=tmp_path, zenv_dir=zenv_dir).returncode == 0
    missing = _zenv("cd", entry_id[:7], cwd=tmp_path, zenv_dir=zenv_dir)
    assert missing.returncode == 5
    assert missing.stderr.strip().splitlines()[-1].startswith("Error:")
