"""Helper functions exposed to templates as globals, filters and ``_helpers``."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from ..environment.casing import camel_case, kebab_case, pascal_case, snake_case


def upper(value: Any) -> str:
    return str(value).upper()


def lower(value: Any) -> str:
    return str(value).lower()


def to_json(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, indent=indent, default=str)


DEFAULT_HELPERS: dict[str, Callable[..., Any]] = {
    "kebab_case": kebab_case,
    "camel_case": camel_case,
    "pascal_case": pascal_case,
    "snake_case": snake_case,
    "upper": upper,
    "lower": lower,
    "json": to_json,
}
