"""Request, result and stage models for a generation run."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..core.errors import Violation
from ..core.models import TemplateDescriptor, VariableContext
from ..processing.models import BatchResult


class Stage(str, Enum):
    RESOLVE_TEMPLATE = "resolve_template"
    VALIDATE = "validate"
    RESOLVE_VARIABLES = "resolve_variables"
    PREPARE_OUTPUT = "prepare_output"
    PROCESS_FILES = "process_files"
    RUN_HOOKS = "run_hooks"
    DONE = "done"
    FAILED = "failed"


class GenerationRequest(BaseModel):
    template: str = Field(..., description="Template name or local template directory")
    output_dir: Path
    version: str | None = Field(default=None, description="Exact version or semver range")
    variables: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] = Field(default_factory=dict)
    environment: str | None = None
    force: bool = False
    dry_run: bool = False


class StageTiming(BaseModel):
    stage: Stage
    elapsed: float = Field(..., description="Seconds")
    succeeded: bool = True


class ValidationReport(BaseModel):
    errors: list[Violation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class GenerationResult(BaseModel):
    status: Literal["success", "partial", "failed"]
    output_dir: Path
    template: TemplateDescriptor | None = None
    variables: VariableContext | None = None
    processing: BatchResult = Field(default_factory=BatchResult)
    stages: list[StageTiming] = Field(default_factory=list)
    generation_time: float = Field(default=0.0, description="Seconds")
    failed_stage: Stage | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    def stage_time(self, stage: Stage) -> float | None:
        for timing in self.stages:
            if timing.stage == stage:
                return timing.elapsed
        return None
