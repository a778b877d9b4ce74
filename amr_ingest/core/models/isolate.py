"""
Normalized isolate and antibiotic-result models.
"""

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .quality import QualityIssue

Category = Literal["S", "I", "R", "NS", "U"]
Method = Literal["disk", "mic", "etest", "pre-interpreted"]
Operator = Literal["<", "<=", "=", ">=", ">"]
Provenance = Literal["raw", "pre-interpreted"]
UnitStatus = Literal["pending", "interpreted", "unclassifiable", "uninterpretable", "failed"]

CATEGORIES: tuple[str, ...] = ("S", "I", "R", "NS", "U")


class RawValue(BaseModel):
    """
    A raw AST measurement: number, comparison operator and unit.

    Attributes:
        number: Measured value (MIC in mg/L or zone diameter in mm)
        operator: Comparison operator for censored values ("=" when exact)
        unit: Unit as written in the source, if any
    """

    number: float
    operator: Operator = "="
    unit: str | None = None

    class Config:
        frozen = True

    def __str__(self) -> str:
        number = str(int(self.number)) if self.number.is_integer() else repr(self.number)
        prefix = "" if self.operator == "=" else self.operator
        return f"{prefix}{number}"

    @property
    def text(self) -> str:
        """Operator, full-precision number and unit, readable by the value parser."""
        return f"{self} {self.unit}" if self.unit else str(self)


class AntibioticResultUnit(BaseModel):
    """
    One antibiotic result for an isolate.

    Invariant: once interpretation has run, a unit is either "interpreted"
    with exactly one category, or carries a non-committable status.

    Attributes:
        antibiotic: Antibiotic code
        method: disk, mic, etest or pre-interpreted
        raw_value: Parsed measurement, None for pure categories
        category: S/I/R/NS/U, declared or derived
        breakpoint_standard: Standard used (e.g. "CLSI", "EUCAST")
        breakpoint_version: Standard version (e.g. "2024")
        provenance: "raw" or "pre-interpreted"
        status: Processing status of the unit
        source_column: Source column the value came from
        source_value: Original cell text
    """

    antibiotic: str = Field(..., min_length=1)
    method: Method
    raw_value: RawValue | None = None
    category: Category | None = None
    breakpoint_standard: str | None = None
    breakpoint_version: str | None = None
    provenance: Provenance
    status: UnitStatus = "pending"
    source_column: str | None = None
    source_value: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "antibiotic": "GEN",
                "method": "mic",
                "raw_value": {"number": 4, "operator": "=", "unit": None},
                "category": "S",
                "breakpoint_standard": "CLSI",
                "breakpoint_version": "2024",
                "provenance": "raw",
                "status": "interpreted",
                "source_column": "GEN_MIC",
                "source_value": "4",
            }
        }

    @property
    def committable(self) -> bool:
        return self.status == "interpreted" and self.category is not None


class NormalizedIsolateUnit(BaseModel):
    """
    One organism/specimen/patient-context record with its ordered results.

    Attributes:
        row_number: Source row offset
        specimen_id: Laboratory specimen / isolate identifier
        patient_id: Patient (or animal / sample site) identifier
        organism: Organism code as resolved from the source
        specimen_type: Specimen type (urine, blood, ...)
        specimen_source: Specimen source / body site
        collection_date: Specimen collection date
        facility: Reporting facility or laboratory
        host_species: One Health host (human, animal species, environment)
        extra: Remaining standard fields (sex, age, ward, ...)
        custom_fields: Template-declared custom field values
        results: Ordered antibiotic results
        issues: Issues accumulated by every stage so far
    """

    row_number: int = Field(..., ge=0)
    specimen_id: str | None = None
    patient_id: str | None = None
    organism: str | None = None
    specimen_type: str | None = None
    specimen_source: str | None = None
    collection_date: date | None = None
    facility: str | None = None
    host_species: str | None = None
    extra: dict[str, str | None] = Field(default_factory=dict)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    results: list[AntibioticResultUnit] = Field(default_factory=list)
    issues: list[QualityIssue] = Field(default_factory=list)

    @field_validator("organism", "specimen_type")
    @classmethod
    def strip_codes(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def fatal(self) -> bool:
        return any(issue.severity == "fatal" for issue in self.issues)

    @property
    def committable_results(self) -> list[AntibioticResultUnit]:
        return [unit for unit in self.results if unit.committable]

    def isolate_fields(self) -> dict[str, Any]:
        """Isolate-level fields shared by every result of the row."""
        return {
            "specimen_id": self.specimen_id,
            "patient_id": self.patient_id,
            "organism": self.organism,
            "specimen_type": self.specimen_type,
            "specimen_source": self.specimen_source,
            "collection_date": self.collection_date,
            "facility": self.facility,
            "host_species": self.host_species,
        }
