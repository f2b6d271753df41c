"""Exception taxonomy for the generation pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class Violation(BaseModel):
    """A single validation failure."""

    variable: str = Field(..., description="Variable or field that failed")
    message: str = Field(..., description="Human-readable failure reason")
    code: str = Field(default="validation_error", description="Failure category")


class ScaffoldrError(Exception):
    """Base class for all errors raised by scaffoldr."""

    code = "SCAFFOLDR_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)


class ValidationError(ScaffoldrError):
    """Raised when variables or descriptor fields fail validation.

    Carries every violation found, not only the first one.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, violations: list[Violation], message: str | None = None) -> None:
        self.violations = list(violations)
        detail = "; ".join(f"{v.variable}: {v.message}" for v in self.violations)
        super().__init__(message or f"Validation failed: {detail}")

    @property
    def names(self) -> list[str]:
        return [v.variable for v in self.violations]


class VariableValidationError(ValidationError):
    code = "VARIABLE_VALIDATION_FAILED"


class DescriptorValidationError(ValidationError):
    code = "DESCRIPTOR_VALIDATION_FAILED"


class NotFoundError(ScaffoldrError):
    code = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, name: str, version: str | None = None) -> None:
        self.name = name
        self.version = version
        super().__init__(f"Template not found: {name}@{version or 'latest'}")


class CompilationError(ScaffoldrError):
    """Wraps the template compiler's diagnostic with the offending path."""

    code = "COMPILATION_FAILED"

    def __init__(self, path: Path | str, diagnostic: str) -> None:
        self.path = Path(path)
        self.diagnostic = diagnostic
        super().__init__(f"Template compilation failed for {path}: {diagnostic}")


class RenderError(ScaffoldrError):
    code = "RENDER_FAILED"

    def __init__(self, path: Path | str, diagnostic: str) -> None:
        self.path = Path(path)
        self.diagnostic = diagnostic
        super().__init__(f"Template rendering failed for {path}: {diagnostic}")


class InstallationError(ScaffoldrError):
    code = "INSTALLATION_FAILED"


class InfrastructureError(ScaffoldrError):
    """Raised when a required directory cannot be prepared; aborts the batch."""

    code = "INFRASTRUCTURE_FAILED"


class OutputExistsError(ScaffoldrError):
    code = "OUTPUT_EXISTS"

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(
            f"Output directory already exists: {path}. Use --force to overwrite."
        )


class RemoteSourceError(ScaffoldrError):
    code = "REMOTE_SOURCE_FAILED"
