"""Scaffoldr - template-driven project generator.

Resolves versioned templates, binds layered variables and renders project
trees with Jinja2.
"""

__version__ = "0.1.0"

# Configure logging for library use
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Re-export main CLI entry point
from .cli import main

__all__ = ["main"]
