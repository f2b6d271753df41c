"""CLI argument parsers and validators."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
import yaml


def parse_var(value: str) -> tuple[str, Any]:
    """Parse a variable argument in format KEY=VALUE.

    JSON literals (numbers, booleans, arrays, objects) are decoded; anything
    else stays a string.
    """
    if "=" not in value:
        raise typer.BadParameter(f"Must be KEY=VALUE, got: {value!r}")
    key, raw = value.split("=", 1)
    key = key.strip()
    if not key:
        raise typer.BadParameter(f"Empty variable name in {value!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def parse_vars(values: list[str]) -> dict[str, Any]:
    return dict(parse_var(value) for value in values)


def parse_vars_file(path: Path) -> dict[str, Any]:
    """Load variables from a JSON or YAML mapping file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise typer.BadParameter(f"Cannot read variables file {path}: {e}") from e

    try:
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Invalid variables file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise typer.BadParameter(f"Variables file must contain a mapping: {path}")
    return data
