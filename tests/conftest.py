"""
Shared fixtures for scaffoldr tests.

- Fake clocks for TTL/LRU behaviour
- Template directory builders
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"


# =============================================================================
# Clock Fixtures
# =============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Template Fixtures
# =============================================================================

def descriptor_document(**fields: Any) -> dict[str, Any]:
    """Minimal valid descriptor document with overrides."""
    document = {
        "name": "webapp",
        "version": "1.0.0",
        "description": "Web application starter",
        "author": "scaffoldr",
        "license": "MIT",
    }
    document.update(fields)
    return document


@pytest.fixture
def make_template() -> Callable[..., Path]:
    """
    Factory creating a template directory.

    Usage: make_template(root, files={"a.txt": "..."}, **descriptor_fields)
    """

    def _make(
        directory: Path,
        files: dict[str, str | bytes] | None = None,
        descriptor_name: str = "template.json",
        **fields: Any,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        document = descriptor_document(**fields)
        if descriptor_name.endswith(".json"):
            (directory / descriptor_name).write_text(json.dumps(document), encoding="utf-8")
        else:
            import yaml

            (directory / descriptor_name).write_text(yaml.safe_dump(document), encoding="utf-8")

        for relative, content in (files or {}).items():
            path = directory / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return directory

    return _make


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    root = tmp_path / "templates"
    root.mkdir()
    return root
