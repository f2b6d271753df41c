"""Schema validation capability.

Callers depend on ``SchemaValidator.validate(schema_id, value)`` returning a
list of violations; the JSON Schema engine behind it stays swappable.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from jsonschema import Draft7Validator

from .errors import Violation
from .models import VariableSchema

logger = logging.getLogger(__name__)

_JSON_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


class SchemaValidator(Protocol):
    def register(self, schema_id: str, schema: dict[str, Any]) -> None: ...

    def has(self, schema_id: str) -> bool: ...

    def validate(self, schema_id: str, value: Any) -> list[Violation]: ...


class JsonSchemaValidator:
    """Registry of JSON Schema (draft 7) validators keyed by schema id."""

    def __init__(self, schemas: dict[str, dict[str, Any]] | None = None) -> None:
        self._validators: dict[str, Draft7Validator] = {}
        self._lock = threading.Lock()
        for schema_id, schema in (schemas or {}).items():
            self.register(schema_id, schema)

    def register(self, schema_id: str, schema: dict[str, Any]) -> None:
        Draft7Validator.check_schema(schema)
        with self._lock:
            self._validators[schema_id] = Draft7Validator(schema)

    def has(self, schema_id: str) -> bool:
        with self._lock:
            return schema_id in self._validators

    def validate(self, schema_id: str, value: Any) -> list[Violation]:
        with self._lock:
            validator = self._validators.get(schema_id)
        if validator is None:
            raise KeyError(f"Unknown schema: {schema_id}")

        violations = []
        for error in sorted(validator.iter_errors(value), key=lambda e: [str(p) for p in e.path]):
            location = ".".join(str(part) for part in error.absolute_path)
            violations.append(
                Violation(
                    variable=location or schema_id,
                    message=error.message,
                    code=str(error.validator),
                )
            )
        return violations


def variable_json_schema(schema: VariableSchema) -> dict[str, Any]:
    """Translate a declared variable schema into a JSON Schema document."""
    json_schema: dict[str, Any] = {}
    if schema.type in _JSON_TYPES:
        json_schema["type"] = schema.type
    else:
        logger.warning(
            f"Variable '{schema.name}' declares unknown type {schema.type!r}; type not enforced"
        )
    if schema.pattern:
        json_schema["pattern"] = schema.pattern
    if schema.enum is not None:
        json_schema["enum"] = list(schema.enum)
    if schema.minimum is not None:
        json_schema["minimum"] = schema.minimum
    if schema.maximum is not None:
        json_schema["maximum"] = schema.maximum
    return json_schema
