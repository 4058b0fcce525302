"""
Tests for the command line entry point
"""

import json

import pytest

import sync
from config import REQUIRED_VARS


@pytest.fixture
def cli(engine, populated, monkeypatch):
    for name in ("SYNC_BATCH_COUNT", "SYNC_DIRECTION", "SYNC_GROUPS", "SYNC_STATE_DB"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(sync, "build_engine", lambda settings: engine)
    monkeypatch.setattr(sync, "close_engine", lambda engine: None)
    return engine


def test_batch_prints_progress(cli, capsys):
    assert sync.main(["batch", "to-directory", "--page-size", "0"]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report["finished"] is True
    assert report["changed"] == 2


def test_batch_uses_direction_identifier(cli, capsys):
    assert sync.main(["batch", "to-directory", "--page-size", "1"]) == 0

    assert cli.state.cursor_identifiers() == ["cron_to-directory"]
    assert sync.main(["status", "cron_to-directory"]) == 0
    assert sync.main(["stop", "cron_to-directory"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert json.loads(lines[1])["finished"] is False
    assert json.loads(lines[2]) == {"stopped": True}


def test_group_command(cli, capsys):
    assert sync.main(["group", "7", "to-directory"]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report["processed"] == 2
    assert report["failed"] == 0


def test_collaborator_failure_exits_non_zero(cli, community):
    community.fail_on.add("group_get")

    assert sync.main(["group", "7", "to-directory"]) == 1


def test_invalid_configuration_exits_non_zero(cli, monkeypatch):
    monkeypatch.setenv("SYNC_BATCH_COUNT", "-1")

    assert sync.main(["status", "cron"]) == 1


def test_check_reports_missing_variables(cli, monkeypatch, capsys):
    for name in REQUIRED_VARS:
        monkeypatch.delenv(name, raising=False)

    assert sync.main(["check"]) == 1
    assert "LDAP_SERVER" in capsys.readouterr().out


def test_check_pings_collaborators(cli, monkeypatch, capsys, acl):
    for name in REQUIRED_VARS:
        monkeypatch.setenv(name, "x")
    acl.fail_on.add("ping")

    assert sync.main(["check"]) == 1

    out = capsys.readouterr().out
    assert "community: OK" in out
    assert "acl: Injected failure in ping" in out
