"""Generation pipeline: template → validation → variables → output → files → hooks."""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..catalog.catalog import TemplateCatalog
from ..catalog.loader import DESCRIPTOR_FILENAMES, find_descriptor_file, load_descriptor
from ..catalog.sources import HttpRegistrySource
from ..core import events
from ..core.cache import TTLCache
from ..core.errors import (
    DescriptorValidationError,
    InstallationError,
    OutputExistsError,
    ScaffoldrError,
    TemplateNotFoundError,
)
from ..core.events import EventBus
from ..core.hooks import HookRunner
from ..core.models import InstallResult, TemplateDescriptor, VariableContext
from ..core.schema import JsonSchemaValidator, SchemaValidator
from ..core.settings import Settings
from ..environment.resolver import ResolutionOptions, ResolverConfig, VariableResolver
from ..processing.models import BatchResult, ProcessingOptions
from ..processing.processor import BatchFileProcessor
from ..rendering.compiler import TemplateCompiler
from .models import GenerationRequest, GenerationResult, Stage, StageTiming
from .validation import validate_descriptor

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Runs one generation request through every stage and reports per-stage timings.

    Args:
        catalog: Template lookup and installation
        resolver: Variable context resolution
        processor: Batch copy/render of the template tree
        hook_runner: Runner for pre/post-generate hooks
        event_bus: Receives lifecycle notifications
        schema_validator: Validator for descriptors loaded from a path
        processing_options: Base options for the file processing stage
    """

    def __init__(
        self,
        catalog: TemplateCatalog,
        resolver: VariableResolver,
        processor: BatchFileProcessor,
        *,
        hook_runner: HookRunner | None = None,
        event_bus: EventBus | None = None,
        schema_validator: SchemaValidator | None = None,
        processing_options: ProcessingOptions | None = None,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.processor = processor
        self.hook_runner = hook_runner or HookRunner()
        self.event_bus = event_bus or EventBus()
        self.schema_validator = schema_validator or catalog.schema_validator
        self.processing_options = processing_options or processor.options

    def generate(
        self,
        request: GenerationRequest,
        cancel: threading.Event | None = None,
    ) -> GenerationResult:
        """Generate a project tree; stage failures yield a ``failed`` result."""
        started = time.perf_counter()
        output_dir = Path(request.output_dir).expanduser().resolve()
        stages: list[StageTiming] = []
        warnings: list[str] = []
        descriptor: TemplateDescriptor | None = None
        context: VariableContext | None = None
        batch = BatchResult.empty()

        logger.info(f"Starting generation: {request.template} -> {output_dir}")
        self.event_bus.emit(
            events.GENERATION_STARTED,
            template=request.template,
            output_dir=str(output_dir),
            dry_run=request.dry_run,
        )

        try:
            with self._stage(Stage.RESOLVE_TEMPLATE, stages):
                descriptor = self.resolve_template(request.template, request.version)
            self.event_bus.emit(
                events.TEMPLATE_RESOLVED,
                name=descriptor.name,
                version=descriptor.version,
                origin=descriptor.origin,
            )

            with self._stage(Stage.VALIDATE, stages):
                report = validate_descriptor(descriptor)
                for warning in report.warnings:
                    logger.warning(warning)
                warnings.extend(report.warnings)
                if not report.valid:
                    raise DescriptorValidationError(report.errors)
                if not request.dry_run and descriptor.hooks.pre_generate:
                    hook_cwd = descriptor.source_path or Path.cwd()
                    failed = self.hook_runner.run_all(
                        descriptor.hooks.pre_generate, hook_cwd, "pre-generate"
                    )
                    warnings.extend(f"pre-generate hook failed: {cmd}" for cmd in failed)

            with self._stage(Stage.RESOLVE_VARIABLES, stages):
                context = self.resolver.resolve(
                    request.variables,
                    ResolutionOptions(
                        environment=request.environment,
                        overrides=request.overrides,
                        schemas=list(descriptor.variables),
                    ),
                )
                warnings.extend(context.warnings)

            with self._stage(Stage.PREPARE_OUTPUT, stages):
                self.prepare_output(output_dir, request.force, request.dry_run)

            with self._stage(Stage.PROCESS_FILES, stages):
                if request.dry_run:
                    logger.info("Dry run: no files written")
                else:
                    template_root = self._template_root(descriptor)
                    batch = self.processor.process_batch(
                        template_root,
                        output_dir,
                        context.flatten(),
                        self._options_for(descriptor, template_root),
                        cancel=cancel,
                    )

            with self._stage(Stage.RUN_HOOKS, stages):
                if not request.dry_run and descriptor.hooks.post_generate:
                    failed = self.hook_runner.run_all(
                        descriptor.hooks.post_generate, output_dir, "post-generate"
                    )
                    warnings.extend(f"post-generate hook failed: {cmd}" for cmd in failed)

        except (ScaffoldrError, OSError) as exc:
            failed_stage = stages[-1].stage if stages else Stage.RESOLVE_TEMPLATE
            elapsed = time.perf_counter() - started
            logger.error(f"Generation failed at {failed_stage.value}: {exc}")
            self.event_bus.emit(
                events.GENERATION_FAILED,
                template=request.template,
                stage=failed_stage.value,
                error=str(exc),
            )
            return GenerationResult(
                status="failed",
                output_dir=output_dir,
                template=descriptor,
                variables=context,
                processing=batch,
                stages=stages,
                generation_time=elapsed,
                failed_stage=failed_stage,
                error=str(exc),
                warnings=warnings,
            )

        elapsed = time.perf_counter() - started
        status = "partial" if batch.errors > 0 else "success"
        logger.info(
            f"Generation {status}: {batch.success} succeeded, {batch.errors} failed "
            f"in {elapsed * 1000:.0f}ms"
        )
        self.event_bus.emit(
            events.GENERATION_COMPLETED,
            template=descriptor.name,
            version=descriptor.version,
            status=status,
            files=batch.total,
            elapsed=elapsed,
        )
        return GenerationResult(
            status=status,
            output_dir=output_dir,
            template=descriptor,
            variables=context,
            processing=batch,
            stages=stages,
            generation_time=elapsed,
            warnings=warnings,
        )

    def resolve_template(self, template: str, version: str | None = None) -> TemplateDescriptor:
        """Catalog lookup, falling back to a local directory holding a descriptor.

        Raises:
            TemplateNotFoundError: When neither lookup succeeds
        """
        descriptor = self.catalog.get(template, version)
        if descriptor is not None:
            return descriptor

        path = Path(template).expanduser()
        if path.is_dir():
            descriptor_file = find_descriptor_file(path)
            if descriptor_file is not None:
                logger.debug(f"Using template directory {path}")
                return load_descriptor(descriptor_file, self.schema_validator)
        raise TemplateNotFoundError(template, version)

    @staticmethod
    def prepare_output(output_dir: Path, force: bool, dry_run: bool) -> None:
        """Raises ``OutputExistsError`` when the target exists and ``force`` is unset."""
        if output_dir.exists() and not force:
            raise OutputExistsError(output_dir)
        if not dry_run:
            output_dir.mkdir(parents=True, exist_ok=True)

    def list_templates(
        self, category: str | None = None, author: str | None = None
    ) -> list[TemplateDescriptor]:
        return self.catalog.search(category=category, author=author).templates

    def install(
        self, name: str, version: str | None = None, dest_path: Path | None = None
    ) -> InstallResult:
        return self.catalog.install(name, version, dest_path)

    def clear_caches(self) -> None:
        self.catalog.clear_cache()
        self.resolver.clear_cache()
        self.processor.compiler.clear_cache()
        logger.info("All caches cleared")

    def statistics(self) -> dict[str, Any]:
        return {
            "catalog": self.catalog.statistics(),
            "variables": self.resolver.statistics(),
            "compiler": self.processor.compiler.statistics(),
        }

    def _template_root(self, descriptor: TemplateDescriptor) -> Path:
        if descriptor.source_path is not None:
            return descriptor.source_path
        result = self.catalog.install(descriptor.name, descriptor.version)
        if result.status != "success" or result.install_path is None:
            raise InstallationError(
                f"Cannot fetch {descriptor.name}@{descriptor.version}: {result.error}"
            )
        return result.install_path

    def _options_for(self, descriptor: TemplateDescriptor, template_root: Path) -> ProcessingOptions:
        root = template_root.resolve()

        def not_descriptor(path: Path, stat: os.stat_result) -> bool:
            return not (path.parent.resolve() == root and path.name in DESCRIPTOR_FILENAMES)

        base = self.processing_options
        return dataclasses.replace(
            base,
            filters=[*base.filters, not_descriptor],
            rules=[*descriptor.files, *base.rules],
        )

    @contextmanager
    def _stage(self, stage: Stage, stages: list[StageTiming]) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        except BaseException:
            stages.append(
                StageTiming(stage=stage, elapsed=time.perf_counter() - started, succeeded=False)
            )
            raise
        stages.append(StageTiming(stage=stage, elapsed=time.perf_counter() - started))


def build_pipeline(
    settings: Settings | None = None,
    *,
    event_bus: EventBus | None = None,
    resolver_config: ResolverConfig | None = None,
) -> GenerationPipeline:
    """Wire every component from settings."""
    settings = settings or Settings()
    event_bus = event_bus or EventBus()
    validator = JsonSchemaValidator()
    hook_runner = HookRunner()

    sources = [
        HttpRegistrySource(
            url,
            timeout=settings.remote_timeout,
            retries=settings.remote_retries,
            schema_validator=validator,
        )
        for url in settings.remote_registries
    ]
    catalog = TemplateCatalog(
        settings.template_dirs,
        sources,
        settings.cache_dir,
        cache_ttl=settings.catalog_cache_ttl,
        schema_validator=validator,
        hook_runner=hook_runner,
    )

    config = resolver_config or ResolverConfig(
        cache_ttl=settings.variable_cache_ttl,
        cache_size=settings.variable_cache_size,
    )
    resolver = VariableResolver(config, schema_validator=validator)

    compiler = TemplateCompiler(
        cache=TTLCache(
            settings.compiler_cache_ttl, settings.compiler_cache_size, name="templates"
        ),
        enable_inheritance=settings.enable_inheritance,
        event_bus=event_bus,
    )
    options = ProcessingOptions(
        max_file_size=settings.max_file_size,
        template_extensions=frozenset(ext.lower() for ext in settings.template_extensions),
        max_workers=settings.max_workers,
    )
    processor = BatchFileProcessor(compiler, options)

    return GenerationPipeline(
        catalog,
        resolver,
        processor,
        hook_runner=hook_runner,
        event_bus=event_bus,
        schema_validator=validator,
        processing_options=options,
    )
