"""Tests for environment and YAML configuration loading."""

import logging

import pytest

from tracker.config import TrackerConfig, configure_logging, get_config

ENV_KEYS = [
    "AUTHORITY_URL",
    "AUTHORITY_CONNECT_TIMEOUT",
    "AUTHORITY_PING_INTERVAL",
    "AUTHORITY_PING_TIMEOUT",
    "TRACKER_COOLDOWN_MS",
    "TRACKER_CONFIG_DIR",
    "TRACKER_AUTOSAVE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestFromEnv:
    def test_defaults(self) -> None:
        config = TrackerConfig.from_env()
        assert config == TrackerConfig()
        assert config.authority.url == "ws://localhost:3000/ws"
        assert config.tracking.cooldown_ms == 500
        assert config.storage.config_dir == "config/icekart"

    def test_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("AUTHORITY_URL", "ws://race.example:4000/ws")
        monkeypatch.setenv("AUTHORITY_CONNECT_TIMEOUT", "2.5")
        monkeypatch.setenv("AUTHORITY_PING_INTERVAL", "none")
        monkeypatch.setenv("TRACKER_COOLDOWN_MS", "250")
        monkeypatch.setenv("TRACKER_AUTOSAVE", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = TrackerConfig.from_env()
        assert config.authority.url == "ws://race.example:4000/ws"
        assert config.authority.connect_timeout == 2.5
        assert config.authority.ping_interval is None
        assert config.tracking.cooldown_ms == 250.0
        assert config.storage.autosave is False
        assert config.log_level == "DEBUG"


class TestFromYaml:
    def test_overlay(self, tmp_path) -> None:
        path = tmp_path / "tracker.yaml"
        path.write_text(
            "authority:\n"
            "  url: ws://yaml:3000/ws\n"
            "tracking:\n"
            "  cooldown_ms: 750\n"
            "  unknown_key: 1\n"
            "bogus:\n"
            "  a: 1\n"
            "log_level: warning\n",
            encoding="utf-8",
        )
        config = TrackerConfig.from_yaml(path)
        assert config.authority.url == "ws://yaml:3000/ws"
        assert config.authority.connect_timeout == 10.0
        assert config.tracking.cooldown_ms == 750
        assert not hasattr(config.tracking, "unknown_key")
        assert config.log_level == "WARNING"

    def test_empty_file(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert TrackerConfig.from_yaml(path) == TrackerConfig()


class TestGetConfig:
    def test_yaml_on_top_of_env(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("AUTHORITY_URL", "ws://env:1/ws")
        monkeypatch.setenv("TRACKER_COOLDOWN_MS", "300")
        path = tmp_path / "tracker.yaml"
        path.write_text("tracking:\n  cooldown_ms: 900\n", encoding="utf-8")

        config = get_config(path)
        assert config.authority.url == "ws://env:1/ws"
        assert config.tracking.cooldown_ms == 900

    def test_missing_yaml_ignored(self, tmp_path) -> None:
        assert get_config(tmp_path / "absent.yaml") == TrackerConfig()

    def test_invalid_env_falls_back_to_defaults(self, monkeypatch) -> None:
        monkeypatch.setenv("AUTHORITY_CONNECT_TIMEOUT", "soon")
        assert get_config() == TrackerConfig()


class TestConfigureLogging:
    @pytest.fixture
    def captured(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        return calls

    def test_level_from_config(self, captured) -> None:
        configure_logging(TrackerConfig(log_level="WARNING"))
        assert captured[0]["level"] == "WARNING"

    def test_explicit_level_wins(self, captured) -> None:
        configure_logging(TrackerConfig(log_level="WARNING"), "debug")
        assert captured[0]["level"] == "DEBUG"

    def test_yaml_level_reaches_logging(self, captured, tmp_path) -> None:
        path = tmp_path / "tracker.yaml"
        path.write_text("log_level: error\n", encoding="utf-8")
        configure_logging(get_config(path))
        assert captured[0]["level"] == "ERROR"
