"""
Tests for configuration loading
"""

import pytest

from config import REQUIRED_VARS, describe_settings, load_settings, parse_sync_groups, validate_settings
from records import DEFAULT_SOURCE_PREFIX, Direction


def test_defaults():
    settings = load_settings({})

    assert settings.batch_count == 25
    assert settings.direction is Direction.TO_DIRECTORY
    assert settings.use_container is False
    assert settings.sync_groups is None
    assert settings.source_prefix == DEFAULT_SOURCE_PREFIX
    assert settings.log_level == "INFO"


def test_values_from_environment():
    settings = load_settings({
        "SYNC_STATE_DB": "/var/lib/sync/state.sqlite3",
        "SYNC_BATCH_COUNT": "0",
        "SYNC_DIRECTION": "to-community",
        "SYNC_CONTAINER_GROUP": "True",
        "SYNC_GROUPS": "7, 8,,12",
        "SYNC_LOCK_TIMEOUT": "60",
        "SYNC_SOURCE_PREFIX": "Portal",
        "LOG_LEVEL": "debug",
    })

    assert settings.state_db == "/var/lib/sync/state.sqlite3"
    assert settings.batch_count == 0
    assert settings.direction is Direction.TO_COMMUNITY
    assert settings.use_container is True
    assert settings.sync_groups == {7, 8, 12}
    assert settings.lock_timeout == 60
    assert settings.source_prefix == "Portal"
    assert settings.log_level == "DEBUG"


def test_negative_batch_count_is_rejected():
    with pytest.raises(ValueError):
        load_settings({"SYNC_BATCH_COUNT": "-1"})


def test_unknown_direction_is_rejected():
    with pytest.raises(ValueError):
        load_settings({"SYNC_DIRECTION": "sideways"})


def test_parse_sync_groups():
    assert parse_sync_groups(None) is None
    assert parse_sync_groups("") is None
    assert parse_sync_groups(" , ") is None
    assert parse_sync_groups("3,1") == {1, 3}
    with pytest.raises(ValueError):
        parse_sync_groups("1,chess")


def test_validate_settings_lists_missing():
    env = {var: "x" for var in REQUIRED_VARS}
    assert validate_settings(env) == []

    del env["CIVICRM_API_KEY"]
    env["LDAP_SERVER"] = ""
    assert validate_settings(env) == ["LDAP_SERVER", "CIVICRM_API_KEY"]


def test_describe_settings_leaves_out_secrets():
    lines = describe_settings({
        "LDAP_BIND_PASSWORD": "hunter2",
        "CIVICRM_API_KEY": "secret-key",
        "CIVICRM_URL": "https://crm.example.org",
    })

    text = "\n".join(lines)
    assert "https://crm.example.org" in text
    assert "hunter2" not in text
    assert "secret-key" not in text
