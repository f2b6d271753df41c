"""File output helpers for generated trees."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 64 * 1024


def ensure_parent(path: Path) -> None:
    """Ensure parent directories exist for the given path.

    Args:
        path: Path whose parent directories should be created
    """
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_text(path: Path, text: str, mode: int | None = None) -> int:
    """Write text to a file atomically using a temporary file.

    Args:
        path: Destination file path
        text: Text content to write
        mode: File permissions (octal); left at the umask default when None

    Returns:
        Number of bytes written
    """
    ensure_parent(path)
    data = text.encode("utf-8")

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
        if mode is None:
            # mkstemp creates 0600 files; fall back to the usual default.
            os.chmod(path, 0o644)
        else:
            os.chmod(path, mode)
    finally:
        if os.path.exists(tmp_name):
            try:
                os.remove(tmp_name)
            except OSError as exc:
                logger.debug(f"Could not remove temporary file {tmp_name}: {exc}")
    return len(data)


def copy_file(source: Path, destination: Path) -> int:
    """Stream-copy bytes from ``source`` to ``destination``.

    Returns:
        Number of bytes copied
    """
    ensure_parent(destination)
    with source.open("rb") as src, destination.open("wb") as dst:
        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
    return destination.stat().st_size


def copy_mode(source: Path, destination: Path) -> None:
    shutil.copymode(source, destination)
