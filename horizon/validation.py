"""
Field validators shared by the task builder and the YAML config loader.

Each validator names the offending field path in its ConfigError so errors
from deep inside a config file point back at the exact key.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from horizon.errors import ConfigError

HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_timezone(name: Any, field_path: str) -> ZoneInfo:
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Error: {field_path} must be a timezone string.")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f'Error: Invalid timezone "{name}" at {field_path}.') from exc


def parse_hhmm(value: Any, field_path: str) -> Tuple[int, int]:
    if not isinstance(value, str):
        raise ConfigError(f"Error: {field_path} must be HH:MM string.")
    match = HHMM_RE.match(value.strip())
    if not match:
        raise ConfigError(f'Error: {field_path} must be HH:MM (24-hour), got "{value}".')
    return int(match.group(1)), int(match.group(2))


def ensure_bool(value: Any, field_path: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be true or false.")
    return value


def ensure_int(
    value: Any,
    field_path: str,
    default: int,
    minimum: int = 1,
    maximum: Optional[int] = None,
) -> int:
    if value is None:
        return default
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < minimum:
        raise ConfigError(f"Error: {field_path} must be >= {minimum}.")
    if maximum is not None and value > maximum:
        raise ConfigError(f"Error: {field_path} must be <= {maximum}.")
    return value


def ensure_str(value: Any, field_path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Error: {field_path} must be a non-empty string.")
    return value.strip()


def validate_day_of_month(value: Any, field_path: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < 1 or value > 31:
        raise ConfigError(f"Error: {field_path} must be between 1 and 31.")
    return value


def validate_weekday(value: Any, field_path: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"Error: {field_path} must be an integer.")
    if value < 0 or value > 7:
        raise ConfigError(f"Error: {field_path} must be between 0 and 7 (0 and 7 are Sunday).")
    return value
