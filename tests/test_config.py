"""
Configuration loading tests.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from wm_bridge.config import (
    CONFIG_ENV_VAR,
    DEFAULT_ICON_SEARCH_DIRS,
    BridgeConfig,
    default_config_path,
    load_config,
)
from wm_bridge.runner import CommandRunner


class TestBridgeConfig:

    def test_defaults(self):
        config = BridgeConfig()

        assert config.yabai_path == "yabai"
        assert config.command_timeout == 10.0
        assert config.kill_grace_period == 1.0
        assert config.debounce_ms == 200
        assert config.debounce_seconds == 0.2
        assert config.max_mutation_batch == 16
        assert config.icon_lookup_timeout == 5.0
        assert config.path_prefix == ["/usr/local/bin", "/opt/homebrew/bin"]
        assert config.icon_search_dirs == DEFAULT_ICON_SEARCH_DIRS
        assert "window_destroyed" in config.signal_events

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            BridgeConfig(command_timeout=0)

    def test_mutation_batch_must_be_positive(self):
        with pytest.raises(ValidationError):
            BridgeConfig(max_mutation_batch=0)

    def test_empty_executable_rejected(self):
        with pytest.raises(ValidationError):
            BridgeConfig(yabai_path="   ")

    def test_blank_directories_dropped_and_home_expanded(self):
        config = BridgeConfig(icon_search_dirs=["", "~/Apps", "  "])

        assert config.icon_search_dirs == [str(Path.home() / "Apps")]

    def test_runner_from_config(self):
        config = BridgeConfig(path_prefix=["/opt/tools"], command_timeout=3, kill_grace_period=0.5)

        runner = CommandRunner.from_config(config)

        assert runner.path_prefix == ["/opt/tools"]
        assert runner.default_timeout == 3
        assert runner.kill_grace_period == 0.5


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.json")

        assert config == BridgeConfig()

    def test_values_loaded(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "yabai_path": "/opt/homebrew/bin/yabai",
            "refresh_interval": 0,
            "debounce_ms": 100,
            "register_signals": False,
        }))

        config = load_config(config_file)

        assert config.yabai_path == "/opt/homebrew/bin/yabai"
        assert config.refresh_interval == 0
        assert config.debounce_seconds == 0.1
        assert config.register_signals is False

    def test_invalid_json_gives_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")

        assert load_config(config_file) == BridgeConfig()

    def test_invalid_values_give_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"debounce_ms": -5}))

        assert load_config(config_file).debounce_ms == 200

    def test_non_object_root_gives_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("[1, 2]")

        assert load_config(config_file) == BridgeConfig()

    def test_env_var_overrides_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "custom.json"))

        assert default_config_path() == tmp_path / "custom.json"
