from __future__ import annotations

import subprocess

import pytest

from zenv.errors import ExitCode, MissingHostname
from zenv.hostname import cluster_name, current_hostname


def _runner(stdout: str = "", returncode: int = 0):
    calls: list[list[str]] = []

    def run(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(args)
        return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr="")

    run.calls = calls  # type: ignore[attr-defined]
    return run


def test_hostname_prefers_hostname_variable() -> None:
    runner = _runner("from-command\n")
    assert current_hostname(environ={"HOSTNAME": "jrlogin08", "HOST": "other"}, runner=runner) == "jrlogin08"
    assert runner.calls == []


def test_empty_hostname_variable_falls_through_to_host() -> None:
    runner = _runner("from-command\n")
    assert current_hostname(environ={"HOSTNAME": "  ", "HOST": "juwels01"}, runner=runner) == "juwels01"


def test_command_is_used_when_variables_are_missing() -> None:
    runner = _runner("node01.cluster\n")
    assert current_hostname(environ={}, runner=runner) == "node01.cluster"
    assert runner.calls == [["hostname"]]


def test_failed_command_raises_missing_hostname() -> None:
    with pytest.raises(MissingHostname) as excinfo:
        current_hostname(environ={}, runner=_runner("", returncode=1))

    assert excinfo.value.code == ExitCode.HOSTNAME_ERROR
    assert "--no-host" in excinfo.value.hint


def test_unavailable_command_raises_missing_hostname() -> None:
    def missing(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("hostname")

    with pytest.raises(MissingHostname):
        current_hostname(environ={}, runner=missing)


def test_blank_command_output_raises_missing_hostname() -> None:
    with pytest.raises(MissingHostname):
        current_hostname(environ={}, runner=_runner("   \n"))


def test_environment_is_read_from_os_environ_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOST", "jusuf02")
    assert current_hostname(runner=_runner("")) == "jusuf02"


@pytest.mark.parametrize(
    ("hostname", "expected"),
    [
        ("node01.cluster.example.com", "cluster"),
        ("jrlogin08.jureca", "jureca"),
        ("login03.jureca.fz-juelich.de", "jureca"),
        ("workstation", "workstation"),
        ("mymac.local", "mymac"),
    ],
)
def test_cluster_name(hostname: str, expected: str) -> None:
    assert cluster_name(hostname) == expected
