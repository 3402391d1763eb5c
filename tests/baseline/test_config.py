"""Tests for walink.engine.config: WALINK_* settings from dotenv and environment."""

import pathlib

import pytest

from walink.engine.config import SupervisorConfig, loadConfig
from walink.engine.errors import ConfigError


class TestFromMapping:
    def test_defaults(self):
        cfg = SupervisorConfig.fromMapping({})
        assert cfg == SupervisorConfig()
        assert cfg.maxReconnectAttempts == 10
        assert cfg.keepAliveInterval == 25.0

    def test_values(self):
        cfg = SupervisorConfig.fromMapping(
            {
                "WALINK_AUTH_DIR": "/var/lib/walink",
                "WALINK_MAX_RECONNECT_ATTEMPTS": "4",
                "WALINK_KEEPALIVE_INTERVAL": "30",
                "WALINK_SESSION_FACTORY": "mylib.session:openSession",
                "WALINK_LOGLEVEL": "debug",
                "UNRELATED": "ignored",
            }
        )
        assert cfg.authDir == pathlib.Path("/var/lib/walink")
        assert cfg.maxReconnectAttempts == 4
        assert cfg.keepAliveInterval == 30.0
        assert cfg.sessionFactory == "mylib.session:openSession"
        assert cfg.logLevel == "DEBUG"

    def test_bad_number(self):
        with pytest.raises(ConfigError, match="WALINK_MAX_RECONNECT_ATTEMPTS"):
            SupervisorConfig.fromMapping({"WALINK_MAX_RECONNECT_ATTEMPTS": "ten"})

    def test_session_options(self):
        opts = SupervisorConfig(connectTimeout=45).sessionOptions()
        assert opts["connectTimeoutMs"] == 45_000
        assert opts["syncFullHistory"] is False


class TestLoadConfig:
    def test_dotenv_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("WALINK_CLOSE_TIMEOUT", raising=False)
        env = tmp_path / ".env.walink"
        env.write_text("WALINK_CLOSE_TIMEOUT=9\n")

        assert loadConfig(env).closeTimeout == 9.0

    def test_environment_wins(self, tmp_path, monkeypatch):
        env = tmp_path / ".env.walink"
        env.write_text("WALINK_CLOSE_TIMEOUT=9\n")
        monkeypatch.setenv("WALINK_CLOSE_TIMEOUT", "2.5")

        assert loadConfig(env).closeTimeout == 2.5

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("WALINK_AUTH_DIR", raising=False)
        cfg = loadConfig(tmp_path / "nope")
        assert cfg.authDir == SupervisorConfig().authDir
