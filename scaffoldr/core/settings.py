"""Engine settings loaded from ``SCAFFOLDR_*`` environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TEMPLATE_EXTENSIONS = [
    ".j2",
    ".jinja",
    ".jinja2",
    ".html",
    ".htm",
    ".txt",
    ".md",
    ".js",
    ".ts",
    ".json",
]


def _default_home() -> Path:
    return Path.home() / ".scaffoldr"


class Settings(BaseSettings):
    """Engine settings, overridable through ``SCAFFOLDR_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="SCAFFOLDR_", case_sensitive=False)

    template_dirs: list[Path] = Field(
        default_factory=lambda: [_default_home() / "templates", Path("templates")]
    )
    remote_registries: list[str] = Field(default_factory=list)
    cache_dir: Path = Field(default_factory=lambda: _default_home() / "cache")

    catalog_cache_ttl: float = 300.0
    compiler_cache_size: int = 1000
    compiler_cache_ttl: float = 300.0
    variable_cache_ttl: float = 300.0
    variable_cache_size: int | None = 256

    max_workers: int = 8
    max_file_size: int = 100 * 1024 * 1024
    template_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TEMPLATE_EXTENSIONS)
    )
    enable_inheritance: bool = True

    remote_timeout: float = 10.0
    remote_retries: int = 3
