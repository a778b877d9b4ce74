"""
Core data models for the AMR import engine.

All models use Pydantic for runtime validation and type safety.
"""

from .authorization import AuthorizationContext
from .import_batch import (
    ALLOWED_TRANSITIONS,
    BatchCounts,
    BatchFilter,
    BatchReport,
    ImportBatch,
    LedgerEvent,
    RowReport,
)
from .isolate import CATEGORIES, AntibioticResultUnit, NormalizedIsolateUnit, RawValue
from .mapping_template import STANDARD_FIELDS, CustomFieldSpec, MappingTemplate
from .quality import BatchQualitySummary, QualityAssessment, QualityIssue
from .records import PartialRecord, RawRecord, ResultColumn
from .reference import Antibiotic, BreakpointRule, Organism
from .source_file import SourceFile

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CATEGORIES",
    "STANDARD_FIELDS",
    "AuthorizationContext",
    "SourceFile",
    "RawRecord",
    "ResultColumn",
    "PartialRecord",
    "MappingTemplate",
    "CustomFieldSpec",
    "RawValue",
    "AntibioticResultUnit",
    "NormalizedIsolateUnit",
    "QualityIssue",
    "QualityAssessment",
    "BatchQualitySummary",
    "Organism",
    "Antibiotic",
    "BreakpointRule",
    "BatchCounts",
    "ImportBatch",
    "BatchFilter",
    "LedgerEvent",
    "RowReport",
    "BatchReport",
]
