"""``${dotted.path}`` placeholder substitution.

Substitution is a single, non-recursive pass: replacement text is never
re-scanned, so self-referential or cyclic placeholders resolve at most one
level deep. A placeholder whose path does not resolve is left verbatim.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def lookup_path(scope: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path through nested mappings and sequences.

    Returns the module-level ``_MISSING`` sentinel when any segment is absent.
    """
    current: Any = scope
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class Interpolator:
    """Substitutes placeholders against a fixed variable snapshot.

    Args:
        scope: Merged variables, consulted first
        layers: Named layers (``env``, ``user``...) for qualified paths such as
            ``${user.name}``, consulted when the merged lookup misses
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        layers: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self._scope = dict(scope)
        self._layers = dict(layers or {})

    def resolve(self, path: str) -> Any:
        value = lookup_path(self._scope, path)
        if value is _MISSING and "." in path:
            layer_name, _, rest = path.partition(".")
            layer = self._layers.get(layer_name)
            if layer is not None:
                value = lookup_path(layer, rest)
        return value

    def interpolate_string(self, text: str) -> str:
        def _replace(match: re.Match[str]) -> str:
            value = self.resolve(match.group(1).strip())
            return match.group(0) if value is _MISSING else _format(value)

        return PLACEHOLDER.sub(_replace, text)

    def interpolate(self, value: Any) -> Any:
        """Interpolate strings anywhere inside nested lists and mappings."""
        if isinstance(value, str):
            return self.interpolate_string(value)
        if isinstance(value, list):
            return [self.interpolate(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.interpolate(item) for item in value)
        if isinstance(value, dict):
            return {key: self.interpolate(item) for key, item in value.items()}
        return value

    def interpolate_mapping(self, variables: Mapping[str, Any]) -> dict[str, Any]:
        return {key: self.interpolate(value) for key, value in variables.items()}
