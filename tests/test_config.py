"""Tests for configuration loading and path resolution."""

import tomllib

import pytest

from mailbridge.config import (
    Settings,
    init_config,
    load_config,
    load_settings,
    set_config_value,
)
from mailbridge.config.paths import config_file, ensure_parent_dir, oauth_keys_path, token_path
from mailbridge.errors import InvalidAccountId


class TestPaths:
    """Tests for path resolution."""

    def test_token_path_override(self, tmp_path):
        assert token_path() == (tmp_path / "tokens.json").resolve()

    def test_token_path_uses_xdg(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MAILBRIDGE_TOKEN_PATH")

        assert token_path() == tmp_path / "config" / "mailbridge" / "tokens.json"

    def test_oauth_path_override(self, tmp_path):
        assert oauth_keys_path() == (tmp_path / "gcp-oauth.keys.json").resolve()

    def test_parent_dir_created_private(self, tmp_path):
        parent = ensure_parent_dir(tmp_path / "new" / "tokens.json")

        assert parent.is_dir()
        assert parent.stat().st_mode & 0o777 == 0o700


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self):
        assert load_settings({}) == Settings()

    def test_config_values(self):
        settings = load_settings(
            {
                "auth": {"port": 4000, "timeout_seconds": 60},
                "cache": {"ttl_seconds": 10},
                "remote": {"timeout_seconds": 5, "profile_timeout_seconds": 2},
                "logging": {"level": "debug"},
            }
        )

        assert settings.callback_port == 4000
        assert settings.auth_timeout == 60.0
        assert settings.cache_ttl == 10.0
        assert settings.remote_timeout == 5.0
        assert settings.profile_timeout == 2.0
        assert settings.log_level == "DEBUG"

    def test_environment_wins(self, monkeypatch):
        monkeypatch.setenv("MAILBRIDGE_ACCOUNT", "work")
        monkeypatch.setenv("MAILBRIDGE_LOG_LEVEL", "info")

        settings = load_settings({"logging": {"level": "ERROR"}})

        assert settings.account_mode == "work"
        assert settings.log_level == "INFO"

    def test_account_mode_not_lowercased(self, monkeypatch):
        monkeypatch.setenv("MAILBRIDGE_ACCOUNT", "Work")

        with pytest.raises(InvalidAccountId):
            load_settings({})


class TestConfigFile:
    """Tests for reading and writing config.toml."""

    def test_missing_file(self):
        assert load_config() == {}

    def test_init_writes_parsable_template(self):
        assert init_config() is True
        assert init_config() is False

        with open(config_file(), "rb") as f:
            config = tomllib.load(f)
        assert load_settings(config) == Settings()

    def test_set_value_converts_ints(self):
        set_config_value("cache.ttl_seconds", "60")
        set_config_value("logging.level", "DEBUG")

        config = load_config(force_reload=True)
        assert config == {"cache": {"ttl_seconds": 60}, "logging": {"level": "DEBUG"}}

    def test_set_value_rejects_bad_int(self):
        with pytest.raises(ValueError):
            set_config_value("auth.port", "abc")
