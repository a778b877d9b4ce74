"""
Quality models: issues, per-record assessments and the batch aggregate.
"""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["info", "warning", "fatal"]


class QualityIssue(BaseModel):
    """
    A single flagged problem on a record or result unit.

    Attributes:
        kind: Issue kind (e.g. "mapping_error", "unclassifiable", "duplicate")
        field: Field or source column the issue refers to
        severity: "info", "warning" or "fatal" (only fatal blocks commit)
        message: Human-readable description
        antibiotic: Antibiotic code when the issue concerns one result unit
    """

    kind: str = Field(..., min_length=1)
    field: str | None = None
    severity: Severity = "warning"
    message: str = ""
    antibiotic: str | None = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "kind": "interpretation_disagreement",
                "field": "GEN_SIR",
                "severity": "warning",
                "message": "Reported S but MIC 16 interprets as R under CLSI 2024",
                "antibiotic": "GEN",
            }
        }


class QualityAssessment(BaseModel):
    """
    Per-record quality outcome. Computed once, immutable.

    Attributes:
        row_number: Source row the assessment belongs to
        score: Weighted fraction of passed checks in [0, 1]
        issues: All issues on the record, including upstream stage issues
        checks_passed: Names of check categories that passed
        checks_failed: Names of check categories that failed
    """

    row_number: int = Field(..., ge=0)
    score: float = Field(..., ge=0.0, le=1.0)
    issues: tuple[QualityIssue, ...] = ()
    checks_passed: tuple[str, ...] = ()
    checks_failed: tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def fatal(self) -> bool:
        return any(issue.severity == "fatal" for issue in self.issues)

    def issues_with(self, severity: Severity) -> list[QualityIssue]:
        return [issue for issue in self.issues if issue.severity == severity]


class BatchQualitySummary(BaseModel):
    """
    Batch-level aggregate of record assessments.

    Attributes:
        record_count: Number of assessed records
        mean_score: Arithmetic mean of per-record scores (0.0 when empty)
        completeness: Percentage of records passing the completeness check
        severity_counts: Issue counts keyed by severity
        kind_counts: Issue counts keyed by kind
        threshold: Completeness threshold the batch was compared against
        below_threshold: Whether the batch fell below the threshold
    """

    record_count: int = 0
    mean_score: float = Field(0.0, ge=0.0, le=1.0)
    completeness: float = Field(0.0, ge=0.0, le=100.0)
    severity_counts: dict[str, int] = Field(default_factory=dict)
    kind_counts: dict[str, int] = Field(default_factory=dict)
    threshold: float = 0.0
    below_threshold: bool = False
