"""
Unit tests for configuration, banner rendering and session logging.
"""

import json
import logging

import pytest

from bbsserver.config import ServerConfig
from bbsserver.errors import ConfigError
from bbsserver.motd import DEFAULT_MOTD, load_motd, render_motd
from bbsserver.session_log import JsonFormatter, SessionLog


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults_are_valid(self):
        config = ServerConfig()
        config.validate()
        assert config.port == 2323
        assert config.require_login is True
        assert config.idle_timeout is None

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 70000},
        {"backlog": 0},
        {"buffer_size": 0},
        {"poll_interval": 0},
        {"idle_timeout": 0},
        {"write_timeout": 0},
        {"max_sessions": 0},
        {"max_line_length": 0},
        {"max_messages": 0},
        {"max_read_messages": 0},
        {"max_messages": 10, "max_read_messages": 11},
        {"guest_name": "  "},
        {"log_format": "xml"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigError):
            ServerConfig(**overrides).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            ServerConfig(port=-5).validate()

    def test_effective_log_level(self):
        assert ServerConfig(log_level="warning").effective_log_level == "WARNING"
        assert ServerConfig(log_level="warning", debug=True).effective_log_level == "DEBUG"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BBS_HOST", "127.0.0.1")
        monkeypatch.setenv("BBS_PORT", "2424")
        monkeypatch.setenv("BBS_DEBUG", "yes")
        monkeypatch.setenv("BBS_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("BBS_MAX_SESSIONS", "5")
        monkeypatch.setenv("BBS_REQUIRE_LOGIN", "0")
        monkeypatch.setenv("BBS_MESSAGES_FILE", "")

        config = ServerConfig.from_env()
        assert config.host == "127.0.0.1"
        assert config.port == 2424
        assert config.debug is True
        assert config.idle_timeout == 30.0
        assert config.max_sessions == 5
        assert config.require_login is False
        assert config.messages_file == ""

    def test_from_env_defaults(self, monkeypatch):
        for name in ("BBS_PORT", "BBS_IDLE_TIMEOUT", "BBS_MAX_SESSIONS", "BBS_REQUIRE_LOGIN"):
            monkeypatch.delenv(name, raising=False)
        config = ServerConfig.from_env()
        assert config.port == 2323
        assert config.idle_timeout is None
        assert config.max_sessions is None
        assert config.require_login is True

    def test_from_env_bad_number(self, monkeypatch):
        monkeypatch.setenv("BBS_PORT", "not-a-port")
        with pytest.raises(ValueError):
            ServerConfig.from_env()


class TestMotd:
    """Tests for banner rendering."""

    def test_placeholders(self):
        text = render_motd("v{{VERSION}} at {{HOST}}:{{PORT}}", "1.2.3", "bbs.local", 2323)
        assert text == "v1.2.3 at bbs.local:2323\n"

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "motd.txt"
        path.write_text("Hello from {{HOST}}\n", encoding="utf-8")
        assert load_motd(path, "1.0", "here", 1) == "Hello from here\n"

    def test_missing_file_uses_default(self, tmp_path):
        text = load_motd(tmp_path / "missing.txt", "9.9", "h", 7)
        assert text == render_motd(DEFAULT_MOTD, "9.9", "h", 7)
        assert "v9.9" in text


class TestSessionLog:
    """Tests for the per-session summary."""

    def make_entry(self, **overrides) -> SessionLog:
        fields = dict(
            session_id="abcd1234",
            peer="10.0.0.5:51234",
            user="alice",
            commands=7,
            duration_s=42.12345,
            end_reason="exit",
        )
        fields.update(overrides)
        return SessionLog(**fields)

    def test_to_text(self):
        assert self.make_entry().to_text() == (
            "abcd1234 10.0.0.5:51234 user=alice commands=7 duration=42.1s end=exit"
        )

    def test_to_text_without_user(self):
        assert "user=-" in self.make_entry(user=None).to_text()

    def test_to_dict_rounds_duration(self):
        assert self.make_entry().to_dict()["duration_s"] == 42.123

    def test_emit(self, caplog):
        with caplog.at_level(logging.INFO, logger="bbsserver.sessions"):
            self.make_entry().emit()
        [record] = caplog.records
        assert record.name == "bbsserver.sessions"
        assert record.session["user"] == "alice"

    def test_json_formatter_merges_session(self):
        entry = self.make_entry()
        record = logging.LogRecord(
            "bbsserver.sessions", logging.INFO, __file__, 1, entry.to_text(), None, None
        )
        record.session = entry.to_dict()
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["end_reason"] == "exit"
        assert data["message"] == entry.to_text()
