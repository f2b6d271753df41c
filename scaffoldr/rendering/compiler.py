"""Template compilation with metadata extraction and a TTL/LRU unit cache."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template, meta, nodes
from jinja2.exceptions import TemplateSyntaxError

from ..core import events
from ..core.cache import TTLCache
from ..core.errors import CompilationError, RenderError
from ..core.events import EventBus
from .helpers import DEFAULT_HELPERS

logger = logging.getLogger(__name__)

RESERVED_KEYS = ("_helpers", "_metadata")

_BLOCK = re.compile(
    r"(?P<open>\{%-?\s*block\s+(?P<name>\w+)\s*-?%\})"
    r"(?P<body>.*?)"
    r"(?P<close>\{%-?\s*endblock(?:\s+(?P=name))?\s*-?%\})",
    re.DOTALL,
)
_EXTENDS_TAG = re.compile(r"\{%-?\s*extends\s+[^%]*-?%\}\s*")
_MAX_INHERITANCE_DEPTH = 10


@dataclass
class CompiledTemplateUnit:
    path: Path
    last_modified: float
    size: int
    variables: list[str]
    helpers: list[str]
    partials: list[str]
    extends: str | None
    template: Template = field(repr=False)
    cache_key: str = field(repr=False)
    compilation_time: float = 0.0

    def metadata(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "last_modified": self.last_modified,
            "size": self.size,
            "variables": list(self.variables),
            "helpers": list(self.helpers),
            "partials": list(self.partials),
            "extends": self.extends,
            "compilation_time": self.compilation_time,
        }


def fingerprint(path: Path, variables: Mapping[str, Any] | None) -> str:
    """Cache key for a template path and its bound variables."""
    return f"{path}:{json.dumps(dict(variables or {}), sort_keys=True, default=str)}"


def extract_blocks(source: str) -> dict[str, str]:
    """Map block names to their bodies; the first definition of a name wins."""
    blocks: dict[str, str] = {}
    for match in _BLOCK.finditer(source):
        blocks.setdefault(match.group("name"), match.group("body"))
    return blocks


def substitute_blocks(parent_source: str, child_blocks: Mapping[str, str]) -> str:
    """Replace parent block bodies with same-named child bodies.

    Child blocks without a counterpart in the parent are ignored.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group("name")
        if name not in child_blocks:
            return match.group(0)
        return f"{match.group('open')}{child_blocks[name]}{match.group('close')}"

    return _BLOCK.sub(_replace, parent_source)


class TemplateCompiler:
    """Compiles template files into cached, renderable units.

    Args:
        template_root: Default root for relative paths, includes and parents
        cache: Unit cache; created from ``cache_size``/``cache_ttl`` when omitted
        cache_size: Maximum number of cached units
        cache_ttl: Seconds a unit stays cached after insertion
        enable_inheritance: Resolve ``extends`` by substituting child blocks
            into the parent source before compiling
        helpers: Extra helper functions merged over the defaults
        event_bus: Receives ``cache.hit`` / ``cache.miss`` notifications
    """

    def __init__(
        self,
        template_root: Path | None = None,
        *,
        cache: TTLCache[CompiledTemplateUnit] | None = None,
        cache_size: int | None = 1000,
        cache_ttl: float = 300.0,
        enable_inheritance: bool = True,
        helpers: Mapping[str, Callable[..., Any]] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.template_root = Path(template_root or Path.cwd()).resolve()
        if cache is None:
            cache = TTLCache(cache_ttl, cache_size, name="templates")
        self.cache = cache
        self.enable_inheritance = enable_inheritance
        self.helpers: dict[str, Callable[..., Any]] = {**DEFAULT_HELPERS, **(helpers or {})}
        self.event_bus = event_bus
        self._environments: dict[Path, Environment] = {}
        self._lock = threading.Lock()
        self._compilations = 0
        self._compile_seconds = 0.0

    def compile(
        self,
        template_path: Path | str,
        skip_cache: bool = False,
        variables: Mapping[str, Any] | None = None,
        *,
        root: Path | None = None,
    ) -> CompiledTemplateUnit:
        """Compile ``template_path`` or return the cached unit.

        Raises:
            CompilationError: When the source is unreadable or does not parse
        """
        root = Path(root).resolve() if root else self.template_root
        path = Path(template_path)
        if not path.is_absolute():
            path = root / path
        path = path.resolve()
        cache_key = fingerprint(path, variables)

        if not skip_cache:
            entry = self.cache.get_entry(cache_key)
            if entry is not None:
                self._emit(events.CACHE_HIT, path=str(path), access_count=entry.access_count)
                return entry.value
            self._emit(events.CACHE_MISS, path=str(path))

        started = time.perf_counter()
        try:
            stat = path.stat()
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CompilationError(path, str(exc)) from exc

        env = self._environment_for(root)
        try:
            ast = env.parse(source, name=path.name, filename=str(path))
        except TemplateSyntaxError as exc:
            raise CompilationError(path, f"line {exc.lineno}: {exc.message}") from exc

        parent = self._find_parent(ast)
        if parent and self.enable_inheritance:
            source = self._resolve_inheritance(path, source, parent, root)

        try:
            template = env.from_string(source)
        except TemplateSyntaxError as exc:
            raise CompilationError(path, f"line {exc.lineno}: {exc.message}") from exc

        elapsed = time.perf_counter() - started
        unit = CompiledTemplateUnit(
            path=path,
            last_modified=stat.st_mtime,
            size=stat.st_size,
            variables=sorted(
                meta.find_undeclared_variables(ast) - set(self.helpers) - set(RESERVED_KEYS)
            ),
            helpers=sorted(self._find_helpers(ast)),
            partials=sorted(self._find_partials(ast)),
            extends=parent,
            template=template,
            cache_key=cache_key,
            compilation_time=elapsed,
        )

        with self._lock:
            self._compilations += 1
            self._compile_seconds += elapsed
        if not skip_cache:
            self.cache.set(cache_key, unit)
        logger.debug(f"Compiled {path} in {elapsed * 1000:.1f}ms")
        return unit

    def render(
        self,
        unit: CompiledTemplateUnit,
        variables: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Render a unit; ``variables`` override ``context``.

        Raises:
            RenderError: Wrapping whatever the template raised
        """
        data = {
            **(context or {}),
            **(variables or {}),
            "_helpers": dict(self.helpers),
            "_metadata": unit.metadata(),
        }
        try:
            return unit.template.render(data)
        except Exception as exc:
            raise RenderError(unit.path, str(exc)) from exc

    def render_string(self, source: str, variables: Mapping[str, Any]) -> str:
        """Render an inline template such as a destination pattern."""
        env = self._environment_for(self.template_root)
        try:
            return env.from_string(source).render(dict(variables))
        except Exception as exc:
            raise RenderError(Path(source), str(exc)) from exc

    def evaluate(self, expression: str, variables: Mapping[str, Any]) -> Any:
        """Evaluate a Jinja2 expression (file rule conditions)."""
        env = self._environment_for(self.template_root)
        try:
            return env.compile_expression(expression)(**variables)
        except Exception as exc:
            raise RenderError(Path(expression), str(exc)) from exc

    def precompile(
        self,
        paths: Iterable[Path | str],
        variables: Mapping[str, Any] | None = None,
    ) -> list[CompiledTemplateUnit]:
        """Warm the cache; paths that fail to compile are logged and skipped."""
        units = []
        for path in paths:
            try:
                units.append(self.compile(path, variables=variables))
            except CompilationError as exc:
                logger.warning(f"Precompile failed: {exc}")
        return units

    def statistics(self) -> dict[str, Any]:
        stats = self.cache.stats()
        with self._lock:
            compilations = self._compilations
            compile_seconds = self._compile_seconds
        return {
            "cache_size": stats.size,
            "cache_capacity": stats.capacity,
            "hits": stats.hits,
            "misses": stats.misses,
            "hit_rate": stats.hit_rate,
            "evictions": stats.evictions,
            "compilations": compilations,
            "average_compile_time": compile_seconds / compilations if compilations else 0.0,
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        with self._lock:
            self._environments.clear()
        logger.debug("Template cache cleared")

    def _environment_for(self, root: Path) -> Environment:
        with self._lock:
            env = self._environments.get(root)
            if env is None:
                env = Environment(
                    loader=FileSystemLoader(str(root)),
                    undefined=StrictUndefined,
                    autoescape=False,
                    trim_blocks=True,
                    lstrip_blocks=True,
                    keep_trailing_newline=True,
                )
                env.globals.update(self.helpers)
                for name, helper in self.helpers.items():
                    env.filters.setdefault(name, helper)
                self._environments[root] = env
            return env

    def _resolve_inheritance(self, path: Path, source: str, parent: str, root: Path) -> str:
        """Merge child blocks into the parent chain, outermost parent last."""
        merged_blocks = extract_blocks(source)
        current, current_path = parent, path
        for _ in range(_MAX_INHERITANCE_DEPTH):
            parent_path = self._locate_parent(current, current_path, root)
            try:
                parent_source = parent_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise CompilationError(path, f"parent template '{current}': {exc}") from exc

            env = self._environment_for(root)
            try:
                grandparent = self._find_parent(env.parse(parent_source))
            except TemplateSyntaxError as exc:
                raise CompilationError(parent_path, f"line {exc.lineno}: {exc.message}") from exc

            if grandparent is None:
                return substitute_blocks(parent_source, merged_blocks)

            # Intermediate parents contribute blocks the child did not override.
            for name, body in extract_blocks(parent_source).items():
                merged_blocks.setdefault(name, body)
            current, current_path = grandparent, parent_path
        raise CompilationError(path, "template inheritance is nested too deeply")

    @staticmethod
    def _locate_parent(parent: str, child_path: Path, root: Path) -> Path:
        for candidate in (root / parent, child_path.parent / parent):
            if candidate.is_file():
                return candidate
        raise CompilationError(child_path, f"parent template '{parent}' not found")

    @staticmethod
    def _find_parent(ast: nodes.Template) -> str | None:
        for node in ast.find_all(nodes.Extends):
            if isinstance(node.template, nodes.Const) and isinstance(node.template.value, str):
                return node.template.value
        return None

    @staticmethod
    def _find_partials(ast: nodes.Template) -> set[str]:
        partials: set[str] = set()
        for node in ast.find_all((nodes.Include, nodes.Import, nodes.FromImport)):
            target = node.template
            if isinstance(target, nodes.Const) and isinstance(target.value, str):
                partials.add(target.value)
            elif isinstance(target, (nodes.List, nodes.Tuple)):
                partials.update(
                    item.value
                    for item in target.items
                    if isinstance(item, nodes.Const) and isinstance(item.value, str)
                )
        return partials

    def _find_helpers(self, ast: nodes.Template) -> set[str]:
        found: set[str] = set()
        for call in ast.find_all(nodes.Call):
            if isinstance(call.node, nodes.Name) and call.node.name in self.helpers:
                found.add(call.node.name)
        for node in ast.find_all(nodes.Filter):
            if node.name in self.helpers:
                found.add(node.name)
        return found

    def _emit(self, event: str, **payload: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, **payload)
