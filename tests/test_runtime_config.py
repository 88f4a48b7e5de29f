"""
Tests for runtime configuration: YAML defaults, environment overrides, clamping.
"""

from __future__ import annotations

import logging

import pytest

from routekit.config import runtime_config
from routekit.config.runtime_config import (
    DEFAULT_DATA_TYPES,
    EngineConfig,
    get_data_types,
    get_int_setting,
    get_message,
    get_supported_version,
    load_engine_config,
    reset_config,
)


@pytest.fixture
def custom_yaml(tmp_path, monkeypatch):
    """Point the loader at a temporary runtime.yaml."""

    def _write(text: str):
        path = tmp_path / "runtime.yaml"
        path.write_text(text, encoding="utf-8")
        monkeypatch.setattr(runtime_config, "_CONFIG_PATH", path)
        reset_config()
        return path

    return _write


class TestDefaults:
    """Packaged runtime.yaml values."""

    def test_engine_defaults(self):
        config = load_engine_config()

        assert config == EngineConfig(
            supported_version=200,
            max_command_depth=32,
            max_fallback_depth=10,
            history_capacity=100,
            slow_execution_ms=5000,
            data_types=frozenset(DEFAULT_DATA_TYPES),
            messages=config.messages,
        )
        assert config.message("generic_failure") == "Operation failed, please try again"

    def test_missing_file_uses_builtin_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(runtime_config, "_CONFIG_PATH", tmp_path / "absent.yaml")
        reset_config()

        assert get_supported_version() == 200
        assert get_data_types() == frozenset(DEFAULT_DATA_TYPES)
        assert get_message("payment_failure") == "Payment failed"


class TestEnvironmentOverrides:
    """ROUTEKIT_* variables take precedence over YAML."""

    def test_supported_version_override(self, monkeypatch):
        monkeypatch.setenv("ROUTEKIT_SUPPORTED_VERSION", "210")

        assert get_supported_version() == 210
        assert load_engine_config().supported_version == 210

    def test_invalid_value_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("ROUTEKIT_MAX_COMMAND_DEPTH", "deep")

        with caplog.at_level(logging.WARNING, logger="routekit.config.runtime_config"):
            assert get_int_setting("max_command_depth") == 32

        assert "ROUTEKIT_MAX_COMMAND_DEPTH" in caplog.text

    def test_out_of_range_clamped(self, monkeypatch, caplog):
        monkeypatch.setenv("ROUTEKIT_MAX_FALLBACK_DEPTH", "5000")

        with caplog.at_level(logging.WARNING, logger="routekit.config.runtime_config"):
            assert get_int_setting("max_fallback_depth") == 100

        assert "Clamping" in caplog.text

    def test_unknown_setting(self):
        with pytest.raises(KeyError):
            get_int_setting("max_speed")


class TestCustomYaml:
    """Values read from a custom runtime.yaml."""

    def test_values_and_messages(self, custom_yaml):
        custom_yaml(
            """
engine:
  supported_version: 220
  data_types: [user, orders]
telemetry:
  history_capacity: 20
messages:
  generic_failure: "Something went wrong"
"""
        )

        config = load_engine_config()

        assert config.supported_version == 220
        assert config.history_capacity == 20
        assert config.max_command_depth == 32
        assert config.data_types == frozenset({"user", "orders"})
        assert config.message("generic_failure") == "Something went wrong"
        assert config.message("navigation_failure") == "Navigation failed"

    def test_non_integer_yaml_value(self, custom_yaml, caplog):
        custom_yaml("engine:\n  max_command_depth: lots\n")

        with caplog.at_level(logging.WARNING, logger="routekit.config.runtime_config"):
            assert get_int_setting("max_command_depth") == 32

        assert "expected integer" in caplog.text

    def test_env_beats_yaml(self, custom_yaml, monkeypatch):
        custom_yaml("engine:\n  supported_version: 220\n")
        monkeypatch.setenv("ROUTEKIT_SUPPORTED_VERSION", "300")

        assert get_supported_version() == 300

    def test_empty_file(self, custom_yaml):
        custom_yaml("")

        assert get_supported_version() == 200
        assert get_data_types() == frozenset(DEFAULT_DATA_TYPES)
