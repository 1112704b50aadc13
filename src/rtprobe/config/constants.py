"""Config file names and the value parsers used when reading settings."""

from __future__ import annotations

from typing import Optional

DEFAULT_CONFIG_FILENAME = "config.toml"
LOCAL_CONFIG_FILENAME = "config.local.toml"

# Markers accepted for booleans in config files and RTPROBE_* variables.
_BOOL_MARKERS = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


def coerce_bool(value: Optional[object], *, default: bool = False) -> bool:
    """Read a flag from config or the environment; unknown markers give ``default``."""

    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _BOOL_MARKERS.get(value.strip().lower(), default)
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def parse_positive_int(value: Optional[object]) -> Optional[int]:
    """Return ``value`` as a positive int, or ``None`` when it is missing or invalid."""

    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


__all__ = [
    "DEFAULT_CONFIG_FILENAME",
    "LOCAL_CONFIG_FILENAME",
    "coerce_bool",
    "parse_positive_int",
]
