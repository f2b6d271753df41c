"""Environment and system snapshots plus schema-driven type coercion."""

from __future__ import annotations

import getpass
import logging
import os
import platform
import re
import socket
import sys
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"^-?\d+$")
_FLOAT_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?$")

_TRUTHY = {"true", "1", "yes", "on"}
_FALSY = {"false", "0", "no", "off"}


class CoercionError(ValueError):
    """Raised when a value cannot be converted to its declared type."""


def _parse_bool(value: str) -> bool:
    value_lower = value.strip().lower()
    if value_lower in _TRUTHY:
        return True
    if value_lower in _FALSY:
        return False
    raise CoercionError(f"Cannot convert {value!r} to boolean")


def _parse_number(value: Any, *, integer: bool) -> int | float:
    if isinstance(value, bool):
        raise CoercionError(f"Cannot convert {value!r} to number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if integer and not value.is_integer():
            raise CoercionError(f"Cannot convert {value!r} to integer")
        return int(value) if integer else value
    if isinstance(value, str):
        text = value.strip()
        if _INT_PATTERN.match(text):
            return int(text)
        if not integer and _FLOAT_PATTERN.match(text):
            return float(text)
    raise CoercionError(
        f"Cannot convert {value!r} to {'integer' if integer else 'number'}"
    )


def coerce_value(value: Any, type_name: str) -> Any:
    """Coerce a value to the declared variable type.

    Args:
        value: Raw value (often a string from the CLI or environment)
        type_name: One of string, number, integer, boolean, array, object

    Returns:
        Coerced value; unknown types pass through unchanged

    Raises:
        CoercionError: When the value cannot be represented as the type
    """
    if type_name == "string":
        if isinstance(value, (dict, list)):
            raise CoercionError(f"Cannot convert {type(value).__name__} to string")
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    if type_name in ("number", "integer"):
        return _parse_number(value, integer=type_name == "integer")

    if type_name == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            return _parse_bool(value)
        raise CoercionError(f"Cannot convert {value!r} to boolean")

    if type_name == "array":
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return parse_csv_list(value)
        return [value]

    if type_name == "object":
        if isinstance(value, dict):
            return value
        raise CoercionError(f"Cannot convert {value!r} to object")

    return value


def parse_csv_list(raw: str) -> list[str]:
    """Parse a comma-separated list into stripped items."""
    if not raw.strip():
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_environment(exclude_prefixes: tuple[str, ...] = ()) -> dict[str, str]:
    """Snapshot the process environment, dropping keys with excluded prefixes."""
    return {
        key: value
        for key, value in os.environ.items()
        if not (exclude_prefixes and key.startswith(exclude_prefixes))
    }


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER", "")


def load_system() -> dict[str, Any]:
    """Collect host and interpreter facts."""
    logger.debug("Collecting system variables")
    return {
        "hostname": socket.gethostname(),
        "username": _current_user(),
        "homedir": str(Path.home()),
        "tmpdir": tempfile.gettempdir(),
        "platform": sys.platform,
        "arch": platform.machine(),
        "python_version": platform.python_version(),
        "pid": os.getpid(),
    }
