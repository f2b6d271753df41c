"""Template compilation, rendering helpers and output I/O."""

from .compiler import CompiledTemplateUnit, TemplateCompiler
from .helpers import DEFAULT_HELPERS

__all__ = ["DEFAULT_HELPERS", "CompiledTemplateUnit", "TemplateCompiler"]
