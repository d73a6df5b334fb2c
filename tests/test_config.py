"""Configuration loading, saving and the settings view."""

import pytest

from claude_terminal.config.loader import load_config, save_config
from claude_terminal.config.schema import Config, Settings


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "missing.json")

    assert config.engine.tool_delay_s == 4.0
    assert config.tracking.idle_timeout_s == 300.0
    assert not config.app.hooks_enabled


@pytest.mark.parametrize("content", ["{broken", "[]"])
def test_unreadable_file_gives_defaults(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")

    assert load_config(path).terminal.cols == 120


def test_invalid_values_give_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"engine": {"tool_delay_s": "slow"}}', encoding="utf-8")

    assert load_config(path).engine.tool_delay_s == 4.0


def test_save_then_load(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.app.hooks_enabled = True
    config.engine.tool_delay_s = 2.0
    config.terminal.claude_command = "claude --verbose"

    assert save_config(config, path) == path
    loaded = load_config(path)

    assert loaded.app.hooks_enabled
    assert loaded.engine.tool_delay_s == 2.0
    assert loaded.terminal.claude_command == "claude --verbose"


def test_environment_override(monkeypatch):
    monkeypatch.setenv("CLAUDE_TERMINAL_APP__HOOKS_ENABLED", "true")
    monkeypatch.setenv("CLAUDE_TERMINAL_TRACKING__IDLE_TIMEOUT_S", "60")

    config = Config()

    assert config.app.hooks_enabled
    assert config.tracking.idle_timeout_s == 60.0


class TestSettings:
    def test_camel_case_keys(self):
        settings = Settings(Config())

        settings.set("hooksEnabled", True)

        assert settings.get("hooksEnabled") is True
        assert settings.get("hooks_enabled") is True
        assert settings.config.app.hooks_enabled

    def test_unknown_key(self):
        settings = Settings(Config())

        assert settings.get("noSuchKey", "fallback") == "fallback"
        with pytest.raises(KeyError):
            settings.set("noSuchKey", 1)
