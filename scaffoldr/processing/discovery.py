"""Source tree enumeration, file rules and binary detection."""

from __future__ import annotations

import fnmatch
import logging
import mimetypes
import os
from collections.abc import Iterator, Sequence
from pathlib import Path

from ..core.models import FileRule
from .models import DEFAULT_EXCLUDED_DIRS

logger = logging.getLogger(__name__)

SNIFF_BYTES = 1024

# application/* types that are still text and safe to render.
_TEXTUAL_APPLICATION_TYPES = {
    "application/json",
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "application/xml",
    "application/xhtml+xml",
    "application/x-yaml",
    "application/yaml",
    "application/toml",
    "application/x-sh",
    "application/x-shellscript",
    "application/x-python-code",
    "application/sql",
    "application/graphql",
    "application/ld+json",
    "application/x-httpd-php",
    "application/rtf",
    "application/x-tex",
    "application/x-latex",
    "application/typescript",
    "application/x-typescript",
}
_BINARY_MAJOR_TYPES = {"image", "audio", "video", "font"}


def discover_files(
    source_dir: Path, excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS
) -> Iterator[Path]:
    """Yield regular files below ``source_dir`` in a stable order.

    Symbolic links are neither followed nor yielded.
    """
    for dirpath, dirnames, filenames in os.walk(source_dir, followlinks=False):
        dirnames[:] = sorted(d for d in dirnames if d not in excluded_dirs)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.is_symlink():
                logger.debug(f"Skipping symlink: {path}")
                continue
            yield path


def _mime_says_binary(path: Path) -> bool | None:
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type is None:
        return None
    major = mime_type.split("/", 1)[0]
    if major == "text" or mime_type.endswith(("+xml", "+json")):
        return False
    if major in _BINARY_MAJOR_TYPES:
        # SVG is XML text despite its image/* type.
        return mime_type != "image/svg+xml"
    if major == "application":
        return mime_type not in _TEXTUAL_APPLICATION_TYPES
    return None


def is_binary(path: Path, trust_mime: bool = True) -> bool:
    """Classify by MIME association first, then by a NUL byte in the first 1KB.

    Template files pass ``trust_mime=False``: extensions such as ``.ts`` collide
    with binary MIME registrations.
    """
    by_mime = _mime_says_binary(path) if trust_mime else None
    if by_mime is not None:
        return by_mime
    with path.open("rb") as handle:
        return b"\0" in handle.read(SNIFF_BYTES)


def rule_matches(rule: FileRule, relative_path: str) -> bool:
    """Match a glob against the relative path, or the file name for slash-free globs."""
    if not rule.source:
        return False
    if fnmatch.fnmatchcase(relative_path, rule.source):
        return True
    if "/" not in rule.source:
        return fnmatch.fnmatchcase(relative_path.rsplit("/", 1)[-1], rule.source)
    return False


def match_rule(relative_path: str, rules: Sequence[FileRule]) -> FileRule | None:
    """First rule whose source glob matches wins."""
    for rule in rules:
        if rule_matches(rule, relative_path):
            return rule
    return None


def parse_permissions(value: str) -> int:
    """Parse an octal mode such as ``"0755"`` or ``"755"``.

    Raises:
        ValueError: When the value is not an octal mode
    """
    text = value.strip().lower().removeprefix("0o")
    mode = int(text, 8)
    if not 0 <= mode <= 0o7777:
        raise ValueError(f"Permission mode out of range: {value}")
    return mode
