"""Tests for container reachability checks."""
import subprocess

import pytest

from lxcmap.core.errors import ActionFailure
from lxcmap.scaffold import ScaffoldManager
from lxcmap.services.connectivity import ConnectivityChecker, parse_ping_output

from conftest import completed, make_spec

PING_OUTPUT = """web01 | SUCCESS => {"changed": false,"ping": "pong"}
web02 | UNREACHABLE! => {"changed": false,"msg": "Failed to connect to the host via ssh","unreachable": true}
"""


@pytest.fixture
def hosts_file(tmp_path):
    scaffold = ScaffoldManager(tmp_path)
    target = scaffold.emit("web", [
        make_spec(2001, hostname="web01"),
        make_spec(2002, hostname="web02"),
        make_spec(2003, hostname="web03"),
    ])
    return target / "hosts.ini"


def test_parse_ping_output():
    assert parse_ping_output(PING_OUTPUT) == {"web01": "SUCCESS", "web02": "UNREACHABLE"}


def test_check_reports_each_container(hosts_file, fast_config, monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return completed(cmd, returncode=4, stdout=PING_OUTPUT)

    monkeypatch.setattr(subprocess, "run", fake_run)

    results = ConnectivityChecker(config=fast_config).check(hosts_file)

    assert calls == [['ansible', '-i', str(hosts_file), 'all', '-m', 'ping', '-o']]
    assert [(r.hostname, r.reachable, r.detail) for r in results] == [
        ("web01", True, "SUCCESS"),
        ("web02", False, "UNREACHABLE"),
        ("web03", False, "NO RESPONSE"),
    ]
    assert {r.deployment for r in results} == {"web"}


def test_timeout_marks_everything_unreachable(hosts_file, fast_config, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)

    results = ConnectivityChecker(config=fast_config).check(hosts_file)

    assert not any(r.reachable for r in results)
    assert {r.detail for r in results} == {"timed out"}


def test_missing_ansible(hosts_file, fast_config, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError("ansible")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ActionFailure, match="ansible not found"):
        ConnectivityChecker(config=fast_config).check(hosts_file)


def test_mock_mode_runs_nothing(hosts_file, fast_config, monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: pytest.fail("subprocess called"))

    results = ConnectivityChecker(mock=True, config=fast_config).check(hosts_file)

    assert [r.hostname for r in results] == ["web01", "web02", "web03"]
    assert all(r.reachable for r in results)
