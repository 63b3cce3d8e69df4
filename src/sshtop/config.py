"""Configuration loading for sshtop.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/sshtop/config.toml → defaults only.
Passwords are never read from the config file.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from sshtop.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "connection": {
        "host": "",
        "username": "",
        "port": 22,
        "key_path": "~/.ssh/id_rsa",
        "use_key": False,
        "timeout": 10.0,
    },
    "monitor": {
        "poll_interval": 2.0,
        "history_size": 100,
    },
    "logging": {
        "file": "~/.cache/sshtop/sshtop.log",
        "level": "INFO",
    },
}

_DEFAULT_PATH = Path.home() / ".config" / "sshtop" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in base.items()}
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Merge one level: overlay sub-keys into base sub-keys
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


# Expected value types per key; bool is kept apart from the numbers.
_TYPES: dict[str, dict[str, tuple[type, ...]]] = {
    "connection": {
        "host": (str,),
        "username": (str,),
        "port": (int,),
        "key_path": (str,),
        "use_key": (bool,),
        "timeout": (int, float),
    },
    "monitor": {
        "poll_interval": (int, float),
        "history_size": (int,),
    },
    "logging": {
        "file": (str,),
        "level": (str,),
    },
}

_TYPE_NAMES = {str: "a string", int: "an integer", bool: "true or false"}


def _check_types(config: dict[str, Any]) -> None:
    for section, keys in _TYPES.items():
        values = config.get(section)
        if not isinstance(values, dict):
            raise ConfigError(f"[{section}] must be a table, got {values!r}")
        for key, types in keys.items():
            value = values.get(key)
            if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
                expected = "a number" if float in types else _TYPE_NAMES[types[0]]
                raise ConfigError(f"{section}.{key} must be {expected}, got {value!r}")


def _validate(config: dict[str, Any]) -> dict[str, Any]:
    connection = config.get("connection")
    if isinstance(connection, dict) and "password" in connection:
        raise ConfigError("passwords are not read from the config file; remove connection.password")
    _check_types(config)
    monitor = config["monitor"]
    if monitor["poll_interval"] <= 0:
        raise ConfigError(f"monitor.poll_interval must be positive, got {monitor['poll_interval']}")
    if monitor["history_size"] < 1:
        raise ConfigError(f"monitor.history_size must be at least 1, got {monitor['history_size']}")
    port = config["connection"]["port"]
    if not 0 < port < 65536:
        raise ConfigError(f"connection.port out of range: {port}")
    return config


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/sshtop/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        ConfigError: If an explicit path doesn't exist or can't be parsed, or
            a value has the wrong type or is out of range.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"invalid TOML in {path}: {e}") from e
        return _validate(_deep_merge(DEFAULT_CONFIG, user_config))

    # Try default location silently
    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _validate(_deep_merge(DEFAULT_CONFIG, user_config))
        except tomllib.TOMLDecodeError:
            logger.warning("Ignoring invalid TOML in %s", _DEFAULT_PATH)

    return _deep_merge(DEFAULT_CONFIG, {})


def apply_overrides(config: dict[str, Any], overrides: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Overlay command-line values, skipping the ones left unset (None)."""
    cleaned = {
        section: {key: value for key, value in values.items() if value is not None}
        for section, values in overrides.items()
    }
    return _validate(_deep_merge(config, cleaned))


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# sshtop configuration",
        "# Place this file at ~/.config/sshtop/config.toml",
        "",
    ]
    for section, values in DEFAULT_CONFIG.items():
        lines.append(f"[{section}]")
        for key, value in values.items():
            if isinstance(value, bool):
                rendered = "true" if value else "false"
            elif isinstance(value, str):
                rendered = f'"{value}"'
            else:
                rendered = str(value)
            lines.append(f"{key} = {rendered}")
        lines.append("")
    return "\n".join(lines)
