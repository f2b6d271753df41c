"""Template discovery, version resolution, search and installation."""

from __future__ import annotations

import json
import logging
import shutil
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from ..core.cache import TTLCache
from ..core.errors import (
    DescriptorValidationError,
    InstallationError,
    RemoteSourceError,
)
from ..core.hooks import HookRunner
from ..core.models import InstallResult, SearchResult, TemplateDescriptor
from ..core.schema import JsonSchemaValidator, SchemaValidator
from ..core.versioning import newest_first, parse_range, parse_version
from .loader import find_descriptor_file, load_descriptor
from .sources import TemplateSource

logger = logging.getLogger(__name__)

_SORT_KEYS = {
    "name": lambda d: d.name.lower(),
    "downloads": lambda d: d.downloads,
    "rating": lambda d: d.rating,
    "updated": lambda d: d.updated_at or "",
    "created": lambda d: d.created_at or "",
}

_INSTALL_IGNORE = shutil.ignore_patterns(".git", ".hg", ".svn", "node_modules", "__pycache__")


def _sorted_descriptors(descriptors: Iterable[TemplateDescriptor]) -> list[TemplateDescriptor]:
    """Order by name, then newest version first."""
    return sorted(newest_first(descriptors, lambda d: d.version), key=lambda d: d.name)


class TemplateCatalog:
    """Registry of template descriptors from local directories and remote sources.

    Args:
        template_dirs: Local directories whose subdirectories hold templates
        sources: Remote template sources
        cache_dir: Root for installed templates
        cache_ttl: Seconds a parsed descriptor or remote listing stays cached
        schema_validator: Validator used for descriptor documents
        hook_runner: Runner for post-install hooks
        descriptor_cache: Cache of parsed descriptors keyed by file path
        remote_cache: Cache of remote listings keyed by source name
    """

    def __init__(
        self,
        template_dirs: Sequence[Path] = (),
        sources: Sequence[TemplateSource] = (),
        cache_dir: Path | None = None,
        *,
        cache_ttl: float = 300.0,
        schema_validator: SchemaValidator | None = None,
        hook_runner: HookRunner | None = None,
        descriptor_cache: TTLCache[tuple[float, TemplateDescriptor]] | None = None,
        remote_cache: TTLCache[list[TemplateDescriptor]] | None = None,
    ) -> None:
        self.template_dirs = [Path(d).expanduser() for d in template_dirs]
        self.sources = list(sources)
        self.cache_dir = Path(cache_dir).expanduser() if cache_dir else Path.home() / ".scaffoldr" / "cache"
        self.schema_validator = schema_validator or JsonSchemaValidator()
        self.hook_runner = hook_runner or HookRunner()
        if descriptor_cache is None:
            descriptor_cache = TTLCache(cache_ttl, name="descriptors")
        if remote_cache is None:
            remote_cache = TTLCache(cache_ttl, name="remote-listings")
        self.descriptor_cache = descriptor_cache
        self.remote_cache = remote_cache
        self._discoveries = 0

    def discover(
        self,
        include_local: bool = True,
        include_remote: bool = True,
        force_refresh: bool = False,
    ) -> list[TemplateDescriptor]:
        """Collect descriptors, deduplicated on (name, version).

        Local descriptors always win over remote ones with the same key; among
        descriptors of the same origin the first discovered wins.
        """
        local = self._discover_local() if include_local else []
        remote = self._discover_remote(force_refresh) if include_remote else []

        unique: dict[tuple[str, str], TemplateDescriptor] = {}
        for descriptor in [*local, *remote]:
            existing = unique.get(descriptor.key)
            if existing is None:
                unique[descriptor.key] = descriptor
            elif existing.origin != descriptor.origin:
                logger.debug(
                    f"Ignoring {descriptor.origin} copy of {descriptor.name}@{descriptor.version}; "
                    f"{existing.origin} copy takes precedence"
                )

        self._discoveries += 1
        descriptors = _sorted_descriptors(unique.values())
        logger.debug(
            f"Discovered {len(descriptors)} template(s) ({len(local)} local, {len(remote)} remote)"
        )
        return descriptors

    def get(self, name: str, version_or_range: str | None = None) -> TemplateDescriptor | None:
        """Resolve a template by name and optional exact version or semver range.

        Returns None when nothing matches.
        """
        candidates = [d for d in self.discover() if d.name == name]
        if not candidates:
            logger.debug(f"No template named '{name}'")
            return None

        if not version_or_range:
            return candidates[0]

        for descriptor in candidates:
            if descriptor.version == version_or_range:
                return descriptor

        spec = parse_range(version_or_range)
        if spec is None:
            logger.debug(f"'{version_or_range}' is neither a known version nor a valid range")
            return None

        for descriptor in candidates:
            version = parse_version(descriptor.version)
            if version is not None and spec.match(version):
                return descriptor

        logger.debug(f"No version of '{name}' satisfies '{version_or_range}'")
        return None

    def search(
        self,
        query: str | None = None,
        *,
        category: str | None = None,
        keywords: Iterable[str] | None = None,
        author: str | None = None,
        license: str | None = None,
        min_rating: float | None = None,
        sort_by: str = "name",
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchResult:
        """Filter, sort and paginate discovered templates."""
        started = time.perf_counter()
        results = self.discover()

        if query:
            needle = query.lower()
            results = [
                d
                for d in results
                if needle in d.name.lower()
                or needle in d.description.lower()
                or any(needle in keyword.lower() for keyword in d.keywords)
            ]
        if category:
            results = [d for d in results if d.category == category]
        if keywords:
            wanted = {keyword.lower() for keyword in keywords}
            results = [d for d in results if wanted & {k.lower() for k in d.keywords}]
        if author:
            results = [d for d in results if d.author.lower() == author.lower()]
        if license:
            results = [d for d in results if d.license.lower() == license.lower()]
        if min_rating is not None:
            results = [d for d in results if d.rating >= min_rating]

        if sort_by == "version":
            results = newest_first(results, lambda d: d.version)
            if not descending:
                results.reverse()
        elif sort_by in _SORT_KEYS:
            results = sorted(results, key=_SORT_KEYS[sort_by], reverse=descending)
        else:
            raise ValueError(f"Unsupported sort field: {sort_by}")

        total = len(results)
        end = offset + limit if limit is not None else None
        return SearchResult(
            templates=results[offset:end],
            total=total,
            search_time=time.perf_counter() - started,
        )

    def install(
        self,
        name: str,
        version: str | None = None,
        dest_path: Path | None = None,
    ) -> InstallResult:
        """Install a template into ``dest_path`` (default under the cache directory).

        An existing target is treated as already installed.

        Raises:
            InstallationError: When the installed tree has no descriptor file
        """
        started = time.perf_counter()
        descriptor = self.get(name, version)
        if descriptor is None:
            return InstallResult(
                status="failed",
                error=f"Template not found: {name}@{version or 'latest'}",
                install_time=time.perf_counter() - started,
            )

        target = Path(dest_path) if dest_path else self.default_install_path(descriptor)
        if target.exists():
            logger.info(f"{descriptor.name}@{descriptor.version} already installed at {target}")
            return InstallResult(
                status="success",
                template=descriptor,
                install_path=target,
                already_installed=True,
                install_time=time.perf_counter() - started,
            )

        try:
            target.mkdir(parents=True)
            self._materialize(descriptor, target)
        except (OSError, RemoteSourceError) as exc:
            logger.error(f"Installing {descriptor.name}@{descriptor.version} failed: {exc}")
            shutil.rmtree(target, ignore_errors=True)
            return InstallResult(
                status="failed",
                template=descriptor,
                error=str(exc),
                install_time=time.perf_counter() - started,
            )

        self.hook_runner.run_all(descriptor.hooks.post_install, target, "post-install")

        if find_descriptor_file(target) is None:
            shutil.rmtree(target, ignore_errors=True)
            raise InstallationError(
                f"Installed template at {target} has no descriptor file",
                template=descriptor.name,
                version=descriptor.version,
            )

        logger.info(f"Installed {descriptor.name}@{descriptor.version} to {target}")
        return InstallResult(
            status="success",
            template=descriptor,
            install_path=target,
            install_time=time.perf_counter() - started,
        )

    def default_install_path(self, descriptor: TemplateDescriptor) -> Path:
        return self.cache_dir / "templates" / descriptor.name / descriptor.version

    def clear_cache(self) -> None:
        self.descriptor_cache.clear()
        self.remote_cache.clear()
        logger.debug("Catalog caches cleared")

    def statistics(self) -> dict[str, Any]:
        descriptor_stats = self.descriptor_cache.stats()
        remote_stats = self.remote_cache.stats()
        return {
            "discoveries": self._discoveries,
            "template_dirs": [str(d) for d in self.template_dirs],
            "sources": [source.name for source in self.sources],
            "descriptor_cache_size": descriptor_stats.size,
            "descriptor_cache_hit_rate": descriptor_stats.hit_rate,
            "remote_cache_size": remote_stats.size,
            "remote_cache_hit_rate": remote_stats.hit_rate,
        }

    def _discover_local(self) -> list[TemplateDescriptor]:
        descriptors: list[TemplateDescriptor] = []
        for directory in self.template_dirs:
            if not directory.is_dir():
                logger.debug(f"Template directory not found: {directory}")
                continue
            for child in sorted(directory.iterdir()):
                if not child.is_dir():
                    continue
                descriptor_file = find_descriptor_file(child)
                if descriptor_file is None:
                    continue
                descriptor = self._load_cached(descriptor_file)
                if descriptor is not None:
                    descriptors.append(descriptor)
        return descriptors

    def _load_cached(self, path: Path) -> TemplateDescriptor | None:
        key = str(path.resolve())
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            logger.warning(f"Cannot stat descriptor {path}: {exc}")
            return None

        cached = self.descriptor_cache.get(key)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        try:
            descriptor = load_descriptor(path, self.schema_validator)
        except DescriptorValidationError as exc:
            logger.warning(f"Skipping invalid template descriptor {path}: {exc}")
            return None

        self.descriptor_cache.set(key, (mtime, descriptor))
        return descriptor

    def _discover_remote(self, force_refresh: bool) -> list[TemplateDescriptor]:
        descriptors: list[TemplateDescriptor] = []
        for source in self.sources:
            if not force_refresh:
                cached = self.remote_cache.get(source.name)
                if cached is not None:
                    descriptors.extend(cached)
                    continue
            try:
                listed = source.list_templates()
            except RemoteSourceError as exc:
                logger.warning(f"Remote source {source.name} unavailable: {exc}")
                continue
            self.remote_cache.set(source.name, listed)
            descriptors.extend(listed)
        return descriptors

    def _materialize(self, descriptor: TemplateDescriptor, target: Path) -> None:
        if descriptor.source_path is not None:
            shutil.copytree(
                descriptor.source_path, target, dirs_exist_ok=True, ignore=_INSTALL_IGNORE
            )
            return

        source = next((s for s in self.sources if s.name == descriptor.origin), None)
        if source is None:
            raise RemoteSourceError(f"No source available for {descriptor.origin}")
        (target / "template.json").write_text(
            json.dumps(descriptor.to_document(), indent=2) + "\n", encoding="utf-8"
        )
        source.download(descriptor, target)
