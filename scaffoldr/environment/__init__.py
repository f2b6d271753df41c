"""Variable context resolution: layering, coercion, interpolation and secrets."""

from .resolver import ResolutionOptions, ResolverConfig, VariableResolver

__all__ = ["ResolutionOptions", "ResolverConfig", "VariableResolver"]
