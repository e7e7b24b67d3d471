from pathlib import Path

import pytest
import yaml

import config
from config import LockSettings, get_config_value, load_lock_settings, set_config_value
from infrastructure.file_operations import FileOperations


def test_defaults_without_config(isolated_config: Path):
    assert not isolated_config.exists()
    assert load_lock_settings() == LockSettings(
        timeout=config.DEFAULT_LOCK_TIMEOUT,
        stale_after=config.DEFAULT_LOCK_STALE_AFTER,
        retry_delay=config.DEFAULT_LOCK_RETRY_DELAY,
        max_retry_delay=config.DEFAULT_LOCK_MAX_RETRY_DELAY,
    )


def test_config_file_values_are_used(isolated_config: Path):
    isolated_config.write_text(yaml.safe_dump({"lock_timeout": 3, "lock_stale_after": 7.5}), encoding="utf-8")

    settings = load_lock_settings()

    assert settings.timeout == 3.0
    assert settings.stale_after == 7.5
    assert settings.retry_delay == config.DEFAULT_LOCK_RETRY_DELAY
    assert FileOperations().lock_settings == settings


def test_environment_beats_config_file(isolated_config: Path, monkeypatch: pytest.MonkeyPatch):
    isolated_config.write_text(yaml.safe_dump({"lock_timeout": 3}), encoding="utf-8")
    monkeypatch.setenv("TASKMASTER_LOCK_TIMEOUT", "1.5")
    monkeypatch.setenv("TASKMASTER_LOCK_RETRY_DELAY", "0.2")

    assert config.get_lock_timeout_seconds() == 1.5
    assert config.get_lock_retry_delay_seconds() == 0.2


def test_junk_values_fall_back_to_defaults(isolated_config: Path, monkeypatch: pytest.MonkeyPatch):
    isolated_config.write_text(yaml.safe_dump({"lock_stale_after": "soon", "lock_timeout": -4}), encoding="utf-8")
    monkeypatch.setenv("TASKMASTER_LOCK_MAX_RETRY_DELAY", "0")

    assert config.get_lock_stale_seconds() == config.DEFAULT_LOCK_STALE_AFTER
    assert config.get_lock_timeout_seconds() == config.DEFAULT_LOCK_TIMEOUT
    assert config.get_lock_max_retry_delay_seconds() == config.DEFAULT_LOCK_MAX_RETRY_DELAY


def test_invalid_yaml_reads_as_empty(isolated_config: Path):
    isolated_config.write_text("lock_timeout: [unclosed", encoding="utf-8")
    assert get_config_value("lock_timeout", "fallback") == "fallback"


def test_set_config_value_round_trip(isolated_config: Path):
    set_config_value("lock_timeout", 4)
    assert get_config_value("lock_timeout") == 4
    assert yaml.safe_load(isolated_config.read_text(encoding="utf-8")) == {"lock_timeout": 4}

    set_config_value("lock_timeout", "  ")
    assert get_config_value("lock_timeout") is None
    assert not isolated_config.exists()
