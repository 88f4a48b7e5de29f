"""Runtime configuration registry for the route command engine.

Provides centralized configuration for protocol version, recursion caps,
telemetry sizing and user-facing text. Environment variables take precedence
over YAML config.

Usage:
    from routekit.config.runtime_config import get_supported_version, load_engine_config

    version = get_supported_version()  # Returns 200 unless overridden
    config = load_engine_config()  # Resolved EngineConfig snapshot

Environment overrides:
    ROUTEKIT_SUPPORTED_VERSION   protocol version the client understands
    ROUTEKIT_MAX_COMMAND_DEPTH   maximum command nesting
    ROUTEKIT_MAX_FALLBACK_DEPTH  maximum fallback hops per execution
    ROUTEKIT_HISTORY_CAPACITY    execution records kept in memory
    ROUTEKIT_SLOW_EXECUTION_MS   duration above which executions are logged as slow
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# (yaml section, key, env var, default, minimum, maximum)
_INT_SETTINGS: Dict[str, Tuple[str, str, str, int, int, int]] = {
    "supported_version": ("engine", "supported_version", "ROUTEKIT_SUPPORTED_VERSION", 200, 0, 99_999),
    "max_command_depth": ("engine", "max_command_depth", "ROUTEKIT_MAX_COMMAND_DEPTH", 32, 1, 256),
    "max_fallback_depth": ("engine", "max_fallback_depth", "ROUTEKIT_MAX_FALLBACK_DEPTH", 10, 0, 100),
    "history_capacity": ("telemetry", "history_capacity", "ROUTEKIT_HISTORY_CAPACITY", 100, 1, 100_000),
    "slow_execution_ms": ("telemetry", "slow_execution_ms", "ROUTEKIT_SLOW_EXECUTION_MS", 5000, 0, 3_600_000),
}

DEFAULT_MESSAGES: Dict[str, str] = {
    "generic_failure": "Operation failed, please try again",
    "navigation_failure": "Navigation failed",
    "payment_failure": "Payment failed",
    "alert_title": "Notice",
    "confirm_title": "Confirm",
    "acknowledge_text": "OK",
    "confirm_text": "OK",
    "cancel_text": "Cancel",
}

DEFAULT_DATA_TYPES = ("user", "userList", "settings", "cache")


def _clamp(value: int, name: str, min_val: int, max_val: int) -> int:
    """Clamp a numeric setting to sanity bounds with logging."""
    if value < min_val:
        logger.warning(
            "Setting '%s' value %d is below minimum %d. Clamping to %d.",
            name,
            value,
            min_val,
            min_val,
        )
        return min_val
    if value > max_val:
        logger.warning(
            "Setting '%s' value %d exceeds maximum %d. Clamping to %d.",
            name,
            value,
            max_val,
            max_val,
        )
        return max_val
    return value


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH, encoding="utf-8") as f:
            _cached_config = yaml.safe_load(f) or {}
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "engine": {
            "supported_version": 200,
            "max_command_depth": 32,
            "max_fallback_depth": 10,
            "data_types": list(DEFAULT_DATA_TYPES),
        },
        "telemetry": {
            "history_capacity": 100,
            "slow_execution_ms": 5000,
        },
        "messages": dict(DEFAULT_MESSAGES),
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def get_int_setting(name: str) -> int:
    """Resolve an integer setting.

    Precedence (highest to lowest):
    1. Environment variable (e.g., ROUTEKIT_SUPPORTED_VERSION)
    2. Config file value
    3. Built-in default

    Invalid values are logged and fall through to the next source; out-of-range
    values are clamped.

    Args:
        name: One of supported_version, max_command_depth, max_fallback_depth,
            history_capacity, slow_execution_ms.

    Raises:
        KeyError: If name is not a known setting.
    """
    section, key, env_var, default, min_val, max_val = _INT_SETTINGS[name]

    env_value = os.environ.get(env_var)
    if env_value:
        try:
            return _clamp(int(env_value), name, min_val, max_val)
        except ValueError:
            logger.warning("Invalid %s value '%s' (expected integer). Ignoring.", env_var, env_value)

    config_value = _load_config().get(section, {}).get(key)
    if config_value is not None:
        if isinstance(config_value, int) and not isinstance(config_value, bool):
            return _clamp(config_value, name, min_val, max_val)
        logger.warning(
            "Invalid %s.%s value '%s' in config (expected integer). Using default %d.",
            section,
            key,
            config_value,
            default,
        )

    return default


def get_supported_version() -> int:
    """Protocol version this client understands."""
    return get_int_setting("supported_version")


def get_data_types() -> FrozenSet[str]:
    """ProcessData kinds routed through mutate_state."""
    configured = _load_config().get("engine", {}).get("data_types")
    if not configured:
        return frozenset(DEFAULT_DATA_TYPES)
    return frozenset(str(t) for t in configured)


def get_message(key: str) -> str:
    """User-facing text for a message key, falling back to the built-in default."""
    messages = _load_config().get("messages", {}) or {}
    value = messages.get(key)
    if isinstance(value, str) and value:
        return value
    return DEFAULT_MESSAGES[key]


@dataclass(frozen=True)
class EngineConfig:
    """Resolved configuration snapshot used by ExecutionEngine and telemetry."""

    supported_version: int = 200
    max_command_depth: int = 32
    max_fallback_depth: int = 10
    history_capacity: int = 100
    slow_execution_ms: int = 5000
    data_types: FrozenSet[str] = frozenset(DEFAULT_DATA_TYPES)
    messages: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MESSAGES))

    def message(self, key: str) -> str:
        return self.messages.get(key) or DEFAULT_MESSAGES[key]


def load_engine_config() -> EngineConfig:
    """Resolve every engine setting into an EngineConfig."""
    return EngineConfig(
        supported_version=get_int_setting("supported_version"),
        max_command_depth=get_int_setting("max_command_depth"),
        max_fallback_depth=get_int_setting("max_fallback_depth"),
        history_capacity=get_int_setting("history_capacity"),
        slow_execution_ms=get_int_setting("slow_execution_ms"),
        data_types=get_data_types(),
        messages={key: get_message(key) for key in DEFAULT_MESSAGES},
    )
