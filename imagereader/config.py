"""Configuration lookup and value coercion for the image reader."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ImageReaderConfigError(ValueError):
    """Raised when the reader cannot be initialized from its configuration."""


_MISSING = object()


def get_value(config: Mapping[str, Any], key: str, default: Any = _MISSING) -> Any:
    if key in config:
        return config[key]
    if default is _MISSING:
        raise ImageReaderConfigError(f"Missing required configuration value '{key}'.")
    return default


def get_str(config: Mapping[str, Any], key: str, default: str | None = None) -> str:
    value = get_value(config, key) if default is None else get_value(config, key, default)
    return str(value).strip()


def get_int(config: Mapping[str, Any], key: str, default: int | None = None) -> int:
    value = get_value(config, key) if default is None else get_value(config, key, default)
    if isinstance(value, int):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ImageReaderConfigError(
            f"Configuration value '{key}' must be an integer, got {value!r}."
        ) from exc


def get_bool(config: Mapping[str, Any], key: str, default: bool | None = None) -> bool:
    return get_int(config, key, None if default is None else int(default)) != 0


def same_token(a: str, b: str) -> bool:
    """Case-insensitive token comparison."""
    return a.lower() == b.lower()


def find_section(config: Mapping[str, Any], param_name: str) -> tuple[str, Mapping[str, Any]]:
    """Return ``(name, section)`` for the first nested section holding ``param_name``."""
    for name, value in config.items():
        if isinstance(value, Mapping) and param_name in value:
            return name, value
    raise ImageReaderConfigError(f"ImageReader requires {param_name} parameter.")
