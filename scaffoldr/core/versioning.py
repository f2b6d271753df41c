"""Semantic version helpers using npm range semantics."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from semantic_version import NpmSpec, Version

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_version(version: str) -> Version | None:
    try:
        return Version(version)
    except (ValueError, TypeError):
        return None


def is_valid_version(version: str) -> bool:
    return parse_version(version) is not None


def parse_range(range_: str) -> NpmSpec | None:
    try:
        return NpmSpec(range_)
    except (ValueError, TypeError):
        return None


def is_valid_range(range_: str) -> bool:
    return parse_range(range_) is not None


def satisfies(version: str, range_: str) -> bool:
    """Return True when ``version`` falls within the npm-style ``range_``."""
    parsed = parse_version(version)
    spec = parse_range(range_)
    if parsed is None or spec is None:
        logger.debug(f"Unable to evaluate {version!r} against {range_!r}")
        return False
    return spec.match(parsed)


def newest_first(items: Iterable[T], version_of: Callable[[T], str]) -> list[T]:
    """Sort items newest version first; items with invalid versions sink to the end."""
    pool = list(items)
    valid = [item for item in pool if is_valid_version(version_of(item))]
    invalid = [item for item in pool if not is_valid_version(version_of(item))]
    valid.sort(key=lambda item: Version(version_of(item)), reverse=True)
    return valid + invalid
