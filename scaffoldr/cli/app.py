"""Main CLI application."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from ..core.errors import InstallationError
from ..core.settings import Settings
from ..pipeline.models import GenerationRequest
from ..pipeline.orchestrator import GenerationPipeline, build_pipeline
from .parsers import parse_vars, parse_vars_file

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="scaffoldr",
    help="Scaffold projects from versioned Jinja2 templates.",
)

TemplateDirOption = Annotated[
    list[Path],
    typer.Option(
        "--template-dir",
        "-t",
        help="Extra directory of templates to search. Repeatable.",
        metavar="DIR",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )


def _pipeline(template_dirs: list[Path]) -> GenerationPipeline:
    settings = Settings()
    if template_dirs:
        settings = settings.model_copy(
            update={"template_dirs": [*template_dirs, *settings.template_dirs]}
        )
    return build_pipeline(settings)


@app.command()
def generate(
    template: Annotated[str, typer.Argument(help="Template name or template directory.")],
    output_dir: Annotated[Path, typer.Argument(help="Directory to generate into.")],
    version: Annotated[
        Optional[str],
        typer.Option("--version", help="Exact version or semver range.", metavar="RANGE"),
    ] = None,
    variables: Annotated[
        list[str],
        typer.Option("--var", help="Template variable (format: KEY=VALUE). Repeatable.", metavar="KEY=VALUE"),
    ] = [],
    vars_file: Annotated[
        Optional[Path],
        typer.Option("--vars-file", help="JSON or YAML file of variables.", metavar="FILE"),
    ] = None,
    environment: Annotated[
        Optional[str],
        typer.Option("--env", help="Environment whose variable set to apply.", metavar="NAME"),
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Write into an existing output directory.")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Resolve and validate without writing files.")
    ] = False,
    template_dirs: TemplateDirOption = [],
    verbose: VerboseOption = False,
) -> None:
    """Generate a project from a template."""
    _configure_logging(verbose)

    values = parse_vars_file(vars_file) if vars_file else {}
    values.update(parse_vars(variables))

    pipeline = _pipeline(template_dirs)
    result = pipeline.generate(
        GenerationRequest(
            template=template,
            version=version,
            output_dir=output_dir,
            variables=values,
            environment=environment,
            force=force,
            dry_run=dry_run,
        )
    )

    if result.status == "failed":
        stage = result.failed_stage.value if result.failed_stage else "unknown"
        typer.echo(f"Generation failed during {stage}: {result.error}", err=True)
        raise typer.Exit(code=1)

    batch = result.processing
    typer.echo(
        f"{result.template.name}@{result.template.version} -> {result.output_dir}: "
        f"{batch.success} written, {batch.skipped} skipped, {batch.errors} failed"
    )
    for failure in batch.failed_files:
        typer.echo(f"  {failure.source}: {failure.error}", err=True)
    if result.status == "partial":
        raise typer.Exit(code=2)


@app.command("list")
def list_templates(
    category: Annotated[Optional[str], typer.Option("--category", help="Filter by category.")] = None,
    author: Annotated[Optional[str], typer.Option("--author", help="Filter by author.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print descriptors as JSON.")] = False,
    template_dirs: TemplateDirOption = [],
    verbose: VerboseOption = False,
) -> None:
    """List available templates."""
    _configure_logging(verbose)

    templates = _pipeline(template_dirs).list_templates(category=category, author=author)
    if as_json:
        typer.echo(json.dumps([t.to_document() for t in templates], indent=2))
        return
    if not templates:
        typer.echo("No templates found.")
        return
    for descriptor in templates:
        typer.echo(f"{descriptor.name}@{descriptor.version}  {descriptor.description}")


@app.command()
def install(
    name: Annotated[str, typer.Argument(help="Template name.")],
    version: Annotated[
        Optional[str],
        typer.Option("--version", help="Exact version or semver range.", metavar="RANGE"),
    ] = None,
    dest: Annotated[
        Optional[Path],
        typer.Option("--dest", help="Install directory (default: cache directory).", metavar="DIR"),
    ] = None,
    template_dirs: TemplateDirOption = [],
    verbose: VerboseOption = False,
) -> None:
    """Install a template into the local cache."""
    _configure_logging(verbose)

    try:
        result = _pipeline(template_dirs).install(name, version, dest)
    except InstallationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if result.status == "failed":
        typer.echo(f"Install failed: {result.error}", err=True)
        raise typer.Exit(code=1)
    note = " (already installed)" if result.already_installed else ""
    typer.echo(f"Installed {result.template.name}@{result.template.version} to {result.install_path}{note}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
