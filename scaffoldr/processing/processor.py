"""Bounded-concurrency copy/render of a template tree into an output tree."""

from __future__ import annotations

import logging
import os
import resource
import sys
import threading
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from ..core.errors import InfrastructureError, RenderError
from ..core.models import FileRule
from ..rendering.compiler import TemplateCompiler
from ..rendering.io import atomic_write_text, copy_file, copy_mode, ensure_parent
from .discovery import discover_files, is_binary, match_rule, parse_permissions
from .models import BatchMetrics, BatchResult, FileResult, ProcessingJob, ProcessingOptions

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


def pool_size(cap: int) -> int:
    return max(1, min(os.cpu_count() or 1, cap))


def peak_memory_mb() -> float:
    """Peak resident set size of this process in MB."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS and kilobytes elsewhere.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return peak / divisor


class BatchFileProcessor:
    """Copies or renders every file of a source tree into a destination tree.

    Args:
        compiler: Compiler used for template files
        options: Defaults for ``process_batch`` calls that pass none
    """

    def __init__(
        self,
        compiler: TemplateCompiler,
        options: ProcessingOptions | None = None,
    ) -> None:
        self.compiler = compiler
        self.options = options or ProcessingOptions()

    def process_batch(
        self,
        source_dir: Path,
        dest_dir: Path,
        variables: Mapping[str, Any],
        options: ProcessingOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Process a whole tree; per-file failures become ``error`` results.

        Once ``cancel`` is set, jobs that have not started are reported as
        skipped. Returns only after every submitted job has finished.

        Raises:
            InfrastructureError: When the source is missing or the destination
                root cannot be created
        """
        options = options or self.options
        source_dir = Path(source_dir).resolve()
        dest_dir = Path(dest_dir).resolve()

        if not source_dir.is_dir():
            raise InfrastructureError(f"Source directory not found: {source_dir}")
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InfrastructureError(
                f"Cannot create destination directory {dest_dir}: {exc}"
            ) from exc

        started = time.perf_counter()
        cache_before = self.compiler.cache.stats()
        jobs = self.build_jobs(source_dir, dest_dir, variables, options)

        workers = pool_size(options.max_workers)
        logger.info(f"Processing {len(jobs)} file(s) with {workers} worker(s)")
        results: list[FileResult] = []
        if jobs:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scaffoldr") as pool:
                futures = [pool.submit(self._run, job, cancel) for job in jobs]
                results = [future.result() for future in futures]

        elapsed = time.perf_counter() - started
        cache_after = self.compiler.cache.stats()
        return self._aggregate(
            results,
            elapsed,
            hits=cache_after.hits - cache_before.hits,
            misses=cache_after.misses - cache_before.misses,
        )

    def build_jobs(
        self,
        source_dir: Path,
        dest_dir: Path,
        variables: Mapping[str, Any],
        options: ProcessingOptions,
    ) -> list[ProcessingJob]:
        """Enumerate the tree and apply size ceiling, filters and file rules.

        Excluded files produce no job and no result.
        """
        snapshot = dict(variables)
        jobs: list[ProcessingJob] = []

        for path in discover_files(source_dir, options.excluded_dirs):
            try:
                stat = path.stat()
            except OSError as exc:
                logger.warning(f"Cannot stat {path}: {exc}")
                continue
            if stat.st_size > options.max_file_size:
                logger.debug(f"Excluding {path}: larger than {options.max_file_size} bytes")
                continue
            if not all(predicate(path, stat) for predicate in options.filters):
                logger.debug(f"Excluding {path}: rejected by filter")
                continue

            relative = path.relative_to(source_dir).as_posix()
            rule = match_rule(relative, options.rules)
            destination = dest_dir / relative
            permissions = None
            if rule is not None:
                if not self._condition_holds(rule, relative, snapshot):
                    continue
                destination = self._rule_destination(rule, path, relative, dest_dir, snapshot)
                if destination is None:
                    continue
                permissions = self._rule_permissions(rule, relative)

            jobs.append(
                ProcessingJob(
                    id=f"job_{len(jobs)}",
                    source=path,
                    destination=destination,
                    template_root=source_dir,
                    variables=snapshot,
                    options=options,
                    handling=rule.type if rule is not None else None,
                    permissions=permissions,
                )
            )
        return jobs

    def process_file(self, job: ProcessingJob) -> FileResult:
        """Copy or render one file. Never raises."""
        started = time.perf_counter()
        rendered = False
        try:
            ensure_parent(job.destination)
            if job.source.stat().st_size > job.options.max_file_size:
                return self._result(
                    job, "skipped", started, error="File exceeds maximum size"
                )

            handling = job.handling or self._classify(job)
            if handling == "template":
                unit = self.compiler.compile(
                    job.source, variables=job.variables, root=job.template_root
                )
                size = atomic_write_text(job.destination, self.compiler.render(unit, job.variables))
                rendered = True
            else:
                size = copy_file(job.source, job.destination)

            if job.options.preserve_permissions:
                copy_mode(job.source, job.destination)
            if job.permissions is not None:
                os.chmod(job.destination, job.permissions)
        except Exception as exc:
            logger.warning(f"Failed to process {job.source}: {exc}")
            return self._result(job, "error", started, error=str(exc))

        return self._result(job, "success", started, size=size, rendered=rendered)

    def _run(self, job: ProcessingJob, cancel: threading.Event | None) -> FileResult:
        if cancel is not None and cancel.is_set():
            return self._result(job, "skipped", time.perf_counter(), error=CANCELLED)
        return self.process_file(job)

    def _classify(self, job: ProcessingJob) -> str:
        options = job.options
        templated = options.is_template(job.source)
        if options.skip_binary and is_binary(job.source, trust_mime=not templated):
            return "binary"
        return "template" if templated else "copy"

    def _condition_holds(self, rule: FileRule, relative: str, variables: dict[str, Any]) -> bool:
        if not rule.condition:
            return True
        try:
            return bool(self.compiler.evaluate(rule.condition, variables))
        except RenderError as exc:
            logger.warning(f"Excluding {relative}: condition {rule.condition!r} failed: {exc}")
            return False

    def _rule_destination(
        self,
        rule: FileRule,
        path: Path,
        relative: str,
        dest_dir: Path,
        variables: dict[str, Any],
    ) -> Path | None:
        if not rule.destination:
            return dest_dir / relative
        try:
            target = self.compiler.render_string(rule.destination, variables)
        except RenderError as exc:
            logger.warning(f"Excluding {relative}: destination pattern failed: {exc}")
            return None
        if target.endswith("/"):
            target += path.name
        destination = (dest_dir / target.lstrip("/")).resolve()
        if not destination.is_relative_to(dest_dir):
            logger.warning(f"Excluding {relative}: destination {target} escapes {dest_dir}")
            return None
        return destination

    @staticmethod
    def _rule_permissions(rule: FileRule, relative: str) -> int | None:
        if not rule.permissions:
            return None
        try:
            return parse_permissions(rule.permissions)
        except ValueError:
            logger.warning(f"Ignoring invalid permissions {rule.permissions!r} for {relative}")
            return None

    @staticmethod
    def _result(
        job: ProcessingJob,
        status: str,
        started: float,
        *,
        size: int = 0,
        error: str | None = None,
        rendered: bool = False,
    ) -> FileResult:
        return FileResult(
            job_id=job.id,
            source=job.source,
            destination=job.destination,
            status=status,
            elapsed=time.perf_counter() - started,
            size=size,
            error=error,
            rendered=rendered,
        )

    @staticmethod
    def _aggregate(
        results: list[FileResult], elapsed: float, *, hits: int, misses: int
    ) -> BatchResult:
        total = len(results)
        success = sum(1 for r in results if r.status == "success")
        skipped = sum(1 for r in results if r.status == "skipped")
        errors = sum(1 for r in results if r.status == "error")
        lookups = hits + misses
        metrics = BatchMetrics(
            throughput=total / elapsed if elapsed > 0 else 0.0,
            mean_file_time=sum(r.elapsed for r in results) / total if total else 0.0,
            peak_memory_mb=peak_memory_mb(),
            cache_hit_rate=hits / lookups if lookups else 0.0,
        )
        logger.info(
            f"Processed {total} file(s): {success} succeeded, {skipped} skipped, {errors} failed"
        )
        return BatchResult(
            total=total,
            success=success,
            skipped=skipped,
            errors=errors,
            elapsed=elapsed,
            results=results,
            metrics=metrics,
        )
