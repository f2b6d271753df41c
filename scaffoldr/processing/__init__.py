"""Batch processing of template trees into output trees."""

from .models import BatchResult, FileResult, ProcessingJob, ProcessingOptions
from .processor import BatchFileProcessor

__all__ = [
    "BatchFileProcessor",
    "BatchResult",
    "FileResult",
    "ProcessingJob",
    "ProcessingOptions",
]
