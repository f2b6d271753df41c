"""Template catalog: descriptor loading, remote sources and version resolution."""

from .catalog import TemplateCatalog
from .loader import DESCRIPTOR_FILENAMES, DESCRIPTOR_SCHEMA, find_descriptor_file, load_descriptor
from .sources import HttpRegistrySource, TemplateSource

__all__ = [
    "DESCRIPTOR_FILENAMES",
    "DESCRIPTOR_SCHEMA",
    "HttpRegistrySource",
    "TemplateCatalog",
    "TemplateSource",
    "find_descriptor_file",
    "load_descriptor",
]
