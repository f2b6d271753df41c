"""Domain models for template descriptors and variable contexts."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _DescriptorModel(BaseModel):
    """Base for descriptor documents: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class TemplateDependency(_DescriptorModel):
    name: str = Field(default="", description="Dependency name")
    version: str = Field(default="", description="Semver range")
    type: Literal["template", "plugin", "tool"] = "template"
    optional: bool = False


class VariableSchema(_DescriptorModel):
    """Declared schema for one template variable."""

    name: str = Field(default="", description="Variable name")
    type: str = Field(default="string", description="JSON type of the value")
    description: str = ""
    default: Any = None
    required: bool = False
    pattern: str | None = None
    enum: list[Any] | None = None
    minimum: float | None = None
    maximum: float | None = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class FileRule(_DescriptorModel):
    """How a subset of template files is mapped into the output tree."""

    source: str = Field(default="", description="Glob relative to the template root")
    destination: str = Field(default="", description="Destination pattern")
    type: Literal["template", "copy", "binary"] | None = None
    condition: str | None = Field(default=None, description="Jinja2 expression")
    permissions: str | None = Field(default=None, description="Octal mode, e.g. 0755")


class TemplateHooks(_DescriptorModel):
    pre_generate: list[str] = Field(default_factory=list)
    post_generate: list[str] = Field(default_factory=list)
    pre_install: list[str] = Field(default_factory=list)
    post_install: list[str] = Field(default_factory=list)


class SecurityIssue(_DescriptorModel):
    severity: Literal["low", "medium", "high", "critical"] = "low"
    type: str = ""
    description: str = ""
    file: str | None = None
    line: int | None = None


class SecurityStatus(_DescriptorModel):
    status: Literal["pending", "passed", "failed", "warning"] = "pending"
    scanned_at: str | None = None
    issues: list[SecurityIssue] = Field(default_factory=list)
    score: float = 0


class TemplateDescriptor(_DescriptorModel):
    """Structured metadata describing a template."""

    name: str
    version: str
    description: str
    author: str
    license: str
    category: str = "general"
    keywords: list[str] = Field(default_factory=list)
    min_engine_version: str | None = None
    dependencies: list[TemplateDependency] = Field(default_factory=list)
    variables: list[VariableSchema] = Field(default_factory=list)
    files: list[FileRule] = Field(default_factory=list)
    hooks: TemplateHooks = Field(default_factory=TemplateHooks)
    repository: str | None = None
    homepage: str | None = None
    documentation: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    downloads: int = 0
    rating: float = 0
    security_status: SecurityStatus = Field(default_factory=SecurityStatus)

    # Runtime attributes, never serialized back to a descriptor file.
    source_path: Path | None = Field(default=None, exclude=True)
    origin: str = Field(default="local", exclude=True)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    @property
    def is_local(self) -> bool:
        return self.origin == "local"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class VariableContext(BaseModel):
    """Layered variables bound for one generation request."""

    env: dict[str, str] = Field(default_factory=dict)
    user: dict[str, Any] = Field(default_factory=dict)
    system: dict[str, Any] = Field(default_factory=dict)
    computed: dict[str, Any] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict, repr=False)
    warnings: list[str] = Field(default_factory=list)

    def flatten(self) -> dict[str, Any]:
        """Merge env, system, user and computed (later wins). Secrets excluded."""
        return {**self.env, **self.system, **self.user, **self.computed}

    def layers(self) -> dict[str, dict[str, Any]]:
        return {
            "env": self.env,
            "system": self.system,
            "user": self.user,
            "computed": self.computed,
        }


class InstallResult(BaseModel):
    status: Literal["success", "failed"]
    template: TemplateDescriptor | None = None
    install_path: Path | None = None
    install_time: float = Field(default=0.0, description="Seconds")
    already_installed: bool = False
    error: str | None = None


class SearchResult(BaseModel):
    templates: list[TemplateDescriptor]
    total: int
    search_time: float = Field(default=0.0, description="Seconds")
