"""Financial upload validation toolkit: parsing, templates, checks and reshaping."""

from .errors import IngestError
from .issues import ValidationIssue, ValidationReport, ValidationStatistics
from .pipeline import FileOutcome, FilePipeline, FilePreview, PipelineConfig, read_table
from .transform import NormalizedLine, TransformContext

__all__ = [
    "FileOutcome",
    "FilePipeline",
    "FilePreview",
    "IngestError",
    "NormalizedLine",
    "PipelineConfig",
    "TransformContext",
    "ValidationIssue",
    "ValidationReport",
    "ValidationStatistics",
    "read_table",
]
