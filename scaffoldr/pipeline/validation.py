"""Strict descriptor checks run before a template is generated."""

from __future__ import annotations

import logging
import re

from ..core.errors import Violation
from ..core.models import TemplateDescriptor
from ..core.versioning import is_valid_range, is_valid_version
from ..processing.discovery import parse_permissions
from .models import ValidationReport

logger = logging.getLogger(__name__)

VARIABLE_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


def validate_descriptor(descriptor: TemplateDescriptor) -> ValidationReport:
    """Collect every structural problem with a descriptor.

    A failed security scan is an error; a scan with warnings is only an
    advisory.
    """
    report = ValidationReport()

    def error(field: str, message: str, code: str = "invalid") -> None:
        report.errors.append(Violation(variable=field, message=message, code=code))

    if not descriptor.name:
        error("name", "Template name is required", "required")
    if not descriptor.version:
        error("version", "Template version is required", "required")
    elif not is_valid_version(descriptor.version):
        error("version", f"Invalid semantic version: {descriptor.version}", "format")
    if not descriptor.description:
        error("description", "Template description is required", "required")

    for index, dependency in enumerate(descriptor.dependencies):
        field = f"dependencies.{index}"
        if not dependency.name:
            error(field, "Dependency name is required", "required")
        if not dependency.version:
            error(field, f"Dependency '{dependency.name}' has no version range", "required")
        elif not is_valid_range(dependency.version):
            error(
                field,
                f"Invalid version range for '{dependency.name}': {dependency.version}",
                "format",
            )

    for index, variable in enumerate(descriptor.variables):
        field = f"variables.{index}"
        if not variable.name:
            error(field, "Variable name is required", "required")
        if variable.type not in VARIABLE_TYPES:
            error(field, f"Unknown type for '{variable.name}': {variable.type}", "type")
        if variable.pattern is not None:
            try:
                re.compile(variable.pattern)
            except re.error as exc:
                error(field, f"Invalid pattern for '{variable.name}': {exc}", "format")

    for index, rule in enumerate(descriptor.files):
        field = f"files.{index}"
        if not rule.source:
            error(field, "File rule source is required", "required")
        if not rule.destination:
            error(field, "File rule destination is required", "required")
        if rule.permissions:
            try:
                parse_permissions(rule.permissions)
            except ValueError:
                error(field, f"Invalid permissions: {rule.permissions}", "format")

    security = descriptor.security_status
    if security.status == "failed":
        error("securityStatus", "Template failed security scan", "security")
    elif security.status == "warning":
        report.warnings.append(
            f"Template has security warnings ({len(security.issues)} issue(s))"
        )

    if report.errors:
        logger.debug(f"Descriptor {descriptor.name} has {len(report.errors)} error(s)")
    return report
