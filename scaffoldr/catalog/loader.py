"""Template descriptor files: discovery, parsing and schema validation."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import DescriptorValidationError, Violation
from ..core.models import TemplateDescriptor
from ..core.schema import SchemaValidator

logger = logging.getLogger(__name__)

DESCRIPTOR_FILENAMES = ("template.json", "template.yaml", "template.yml")
DESCRIPTOR_SCHEMA_ID = "descriptor"
# Set by the loader, never taken from the document itself.
RUNTIME_KEYS = frozenset({"sourcePath", "source_path", "origin"})

DESCRIPTOR_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["name", "version", "description", "author", "license"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "pattern": r"^\d+\.\d+\.\d+"},
        "description": {"type": "string"},
        "author": {"type": "string"},
        "license": {"type": "string"},
        "category": {"type": "string"},
        "keywords": {"type": "array", "items": {"type": "string"}},
        "minEngineVersion": {"type": "string"},
        "dependencies": {"type": "array", "items": {"type": "object"}},
        "variables": {
            "type": "array",
            "items": {"type": "object", "properties": {"name": {"type": "string"}}},
        },
        "files": {"type": "array", "items": {"type": "object"}},
        "hooks": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
        "downloads": {"type": "integer", "minimum": 0},
        "rating": {"type": "number", "minimum": 0},
        "securityStatus": {"type": "object"},
    },
}


def find_descriptor_file(directory: Path) -> Path | None:
    """Return the first descriptor file present in ``directory``."""
    for filename in DESCRIPTOR_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def read_descriptor_document(path: Path) -> dict[str, Any]:
    """Parse a JSON or YAML descriptor file into a raw mapping.

    Raises:
        DescriptorValidationError: When the file is not a readable mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DescriptorValidationError(
            [Violation(variable=path.name, message=str(exc), code="parse_error")],
            message=f"Unreadable descriptor {path}: {exc}",
        ) from exc

    if not isinstance(data, dict):
        raise DescriptorValidationError(
            [Violation(variable=path.name, message="Descriptor must be a mapping", code="type")]
        )
    return data


def parse_descriptor(
    document: dict[str, Any],
    validator: SchemaValidator,
    *,
    source_path: Path | None = None,
    origin: str = "local",
) -> TemplateDescriptor:
    """Validate a raw descriptor document and build the model.

    Raises:
        DescriptorValidationError: Carrying every schema violation found
    """
    if not validator.has(DESCRIPTOR_SCHEMA_ID):
        validator.register(DESCRIPTOR_SCHEMA_ID, DESCRIPTOR_SCHEMA)

    violations = validator.validate(DESCRIPTOR_SCHEMA_ID, document)
    if violations:
        raise DescriptorValidationError(violations)

    fields = {key: value for key, value in document.items() if key not in RUNTIME_KEYS}
    try:
        return TemplateDescriptor.model_validate(
            {**fields, "source_path": source_path, "origin": origin}
        )
    except PydanticValidationError as exc:
        raise DescriptorValidationError(
            [
                Violation(
                    variable=".".join(str(part) for part in error["loc"]),
                    message=error["msg"],
                    code=error["type"],
                )
                for error in exc.errors()
            ]
        ) from exc


def load_descriptor(path: Path, validator: SchemaValidator) -> TemplateDescriptor:
    """Load the descriptor file at ``path``; its directory becomes the template root."""
    document = read_descriptor_document(path)
    descriptor = parse_descriptor(document, validator, source_path=path.parent.resolve())
    logger.debug(f"Loaded descriptor {descriptor.name}@{descriptor.version} from {path}")
    return descriptor
