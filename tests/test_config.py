"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from medsync.config import (
    Config,
    MedSyncSettings,
    default_config_path,
    describe,
    get_config,
    get_data_dir,
    get_db_path,
)


def test_defaults(clean_config):
    config = get_config()
    assert config.api_base_url == "https://api-jictu6k26a-uc.a.run.app"
    assert config.timeout_seconds == 30.0
    assert config.data_dir == clean_config
    assert config.log_level == "INFO"


def test_environment_overrides(clean_config, monkeypatch):
    monkeypatch.setenv("MEDSYNC_API_KEY", "from-env")
    monkeypatch.setenv("MEDSYNC_TIMEOUT_SECONDS", "12")
    config = Config.reload()
    assert config.api_key == "from-env"
    assert config.timeout_seconds == 12


def test_yaml_file_supplies_values(clean_config, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("username: alice\napi_key: from-file\nlog_level: debug\n")

    config = Config.reload(path)

    assert config.username == "alice"
    assert config.api_key == "from-file"
    assert config.log_level == "DEBUG"
    assert Config.get() is config


def test_environment_beats_yaml(clean_config, tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("username: alice\napi_key: from-file\n")
    monkeypatch.setenv("MEDSYNC_API_KEY", "from-env")

    config = Config.reload(path)

    assert config.username == "alice"
    assert config.api_key == "from-env"


def test_broken_yaml_falls_back_to_defaults(clean_config, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("username: [unclosed\n")
    assert Config.reload(path).username == ""


def test_invalid_values_in_file_fall_back(clean_config, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("timeout_seconds: 1000\n")
    assert Config.reload(path).timeout_seconds == 30.0


@pytest.mark.parametrize("field,value", [
    ("timeout_seconds", 0),
    ("timeout_seconds", 301),
    ("api_base_url", "ftp://example.com"),
    ("log_level", "LOUD"),
])
def test_validation(clean_config, field, value):
    with pytest.raises(ValidationError):
        MedSyncSettings(**{field: value})


def test_base_url_trailing_slash_is_removed(clean_config):
    assert MedSyncSettings(api_base_url="https://meds.test/").api_base_url == "https://meds.test"


def test_save_and_reload(clean_config):
    config = MedSyncSettings(username="alice", api_key="secret")

    path = Config.save(config)

    assert path == clean_config / "config.yaml"
    assert path == default_config_path()
    reloaded = Config.reload()
    assert reloaded.username == "alice"
    assert reloaded.api_key == "secret"


def test_paths(clean_config):
    assert get_data_dir() == clean_config
    assert clean_config.is_dir()
    assert get_db_path() == clean_config / "medications.db"


def test_describe_masks_api_key(clean_config):
    values = describe(MedSyncSettings(api_key="abcdefgh"))
    assert values["api_key"] == "abcd****"
    assert isinstance(values["data_dir"], str)


def test_data_dir_expands_user(clean_config, monkeypatch):
    monkeypatch.delenv("MEDSYNC_DATA_DIR")
    config = MedSyncSettings()
    assert config.data_dir == Path("~/.medsync").expanduser()
