"""Jobs, options and results for batch file processing."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..core.models import FileRule
from ..core.settings import DEFAULT_TEMPLATE_EXTENSIONS

FileFilter = Callable[[Path, os.stat_result], bool]

DEFAULT_EXCLUDED_DIRS = frozenset(
    {".git", ".hg", ".svn", "node_modules", "dist", "build", "__pycache__", ".venv"}
)


@dataclass
class ProcessingOptions:
    """Knobs for one batch run."""

    max_file_size: int = 100 * 1024 * 1024
    preserve_permissions: bool = True
    skip_binary: bool = True
    filters: list[FileFilter] = field(default_factory=list)
    template_extensions: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_TEMPLATE_EXTENSIONS)
    )
    rules: list[FileRule] = field(default_factory=list)
    excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS
    max_workers: int = 8

    def is_template(self, path: Path) -> bool:
        return path.suffix.lower() in self.template_extensions


@dataclass
class ProcessingJob:
    id: str
    source: Path
    destination: Path
    template_root: Path
    variables: dict[str, Any]
    options: ProcessingOptions
    handling: Literal["template", "copy", "binary"] | None = None
    permissions: int | None = None

    @property
    def relative_path(self) -> str:
        return self.source.relative_to(self.template_root).as_posix()


class FileResult(BaseModel):
    job_id: str = ""
    source: Path
    destination: Path
    status: Literal["success", "skipped", "error"]
    elapsed: float = Field(default=0.0, description="Seconds")
    size: int = Field(default=0, description="Bytes written")
    error: str | None = None
    rendered: bool = False


class BatchMetrics(BaseModel):
    throughput: float = Field(default=0.0, description="Files per second")
    mean_file_time: float = Field(default=0.0, description="Seconds")
    peak_memory_mb: float = 0.0
    cache_hit_rate: float = 0.0


class BatchResult(BaseModel):
    total: int = 0
    success: int = 0
    skipped: int = 0
    errors: int = 0
    elapsed: float = Field(default=0.0, description="Seconds")
    results: list[FileResult] = Field(default_factory=list)
    metrics: BatchMetrics = Field(default_factory=BatchMetrics)

    @classmethod
    def empty(cls) -> BatchResult:
        return cls()

    @property
    def failed_files(self) -> list[FileResult]:
        return [result for result in self.results if result.status == "error"]
