"""Tests for YAML settings loading."""
import pytest
from pydantic import ValidationError

from app.config import (
    SETTINGS_ENV_VAR,
    AppSettings,
    get_config,
    load_settings,
    reset_config,
    set_config,
    settings_path,
)


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


class TestDefaults:

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yaml")

        assert settings.server.port == 8080
        assert settings.history.first_page_size == 10
        assert settings.history.page_size == 50
        assert settings.history.global_history_limit == 50
        assert settings.retention.direct_message_days == 14
        assert settings.retention.global_message_days == 30
        assert settings.retention.purge_interval_seconds == 3600
        assert settings.database.path == "relay.duckdb"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "relay.settings.yaml"
        path.write_text("")

        assert load_settings(path) == AppSettings()


class TestLoading:

    def test_partial_override(self, tmp_path):
        path = tmp_path / "relay.settings.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "database:\n"
            "  path: /tmp/relay-test.duckdb\n"
            "retention:\n"
            "  enabled: false\n"
        )

        settings = load_settings(path)

        assert settings.server.port == 9000
        assert settings.server.host == "0.0.0.0"
        assert settings.database.path == "/tmp/relay-test.duckdb"
        assert settings.retention.enabled is False
        assert settings.retention.direct_message_days == 14

    def test_invalid_log_level_rejected(self, tmp_path):
        path = tmp_path / "relay.settings.yaml"
        path.write_text("logging:\n  level: chatty\n")

        with pytest.raises(ValidationError):
            load_settings(path)

    def test_log_level_normalised(self, tmp_path):
        path = tmp_path / "relay.settings.yaml"
        path.write_text("logging:\n  level: DEBUG\n")

        assert load_settings(path).logging.level == "debug"

    def test_non_positive_page_size_rejected(self, tmp_path):
        path = tmp_path / "relay.settings.yaml"
        path.write_text("history:\n  page_size: 0\n")

        with pytest.raises(ValidationError):
            load_settings(path)


class TestSettingsPath:

    def test_env_var_overrides_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("server:\n  port: 7070\n")
        monkeypatch.setenv(SETTINGS_ENV_VAR, str(path))

        assert settings_path() == path
        assert get_config().server.port == 7070

    def test_default_path(self, monkeypatch):
        monkeypatch.delenv(SETTINGS_ENV_VAR, raising=False)
        assert settings_path().name == "relay.settings.yaml"

    def test_set_config_is_returned_by_get_config(self):
        custom = AppSettings(server={"port": 1234})
        set_config(custom)

        assert get_config() is custom
