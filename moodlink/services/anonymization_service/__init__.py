"""Anonymization Service: PII removal for research data.

This service provides:
- Cumulative anonymization levels (basic, advanced, differential_privacy)
- Job-scoped pseudonym maps for consistent replacement tokens
- A best-effort validation linter (not a de-identification certification)
- Chunked, resumable research dataset export (JSON / CSV)
"""

from .anonymizer import Anonymizer, ValidationReport, parse_level
from .config import AnonymizationConfig
from .dataset_export import (
    DatasetExport,
    ExportCheckpoint,
    ExportRecord,
    ResearchDatasetExporter,
)
from .pseudonym import PseudonymMap
from .rules import BASIC_RULES, PiiRule

__all__ = [
    "Anonymizer",
    "ValidationReport",
    "parse_level",
    "AnonymizationConfig",
    "DatasetExport",
    "ExportCheckpoint",
    "ExportRecord",
    "ResearchDatasetExporter",
    "PseudonymMap",
    "BASIC_RULES",
    "PiiRule",
]
