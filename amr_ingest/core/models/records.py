"""
Row-level records flowing between the parser, the mapping resolver and
the value classifier (ephemeral, never persisted).
"""

from typing import Any

from pydantic import BaseModel, Field

from .quality import QualityIssue


class RawRecord(BaseModel):
    """
    One source row: source column name to raw string value.

    Attributes:
        row_number: 0-based offset of the row in the data stream (after
                    the header); used as the resume cursor
        values: Column name to raw value (None for empty/missing cells)
    """

    row_number: int = Field(..., ge=0)
    values: dict[str, str | None]

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "row_number": 0,
                "values": {
                    "Organism": "E.coli",
                    "Specimen": "urine",
                    "Date": "2024-01-05",
                    "AMP_SIR": "R",
                    "GEN_MIC": "4",
                },
            }
        }


class ResultColumn(BaseModel):
    """
    A source column carrying an antibiotic result in a wide row.

    Attributes:
        column: Original header (e.g. "GEN_MIC")
        antibiotic: Antibiotic code parsed from the header
        method: Test method implied by the header suffix
        value: Raw cell value
    """

    column: str
    antibiotic: str
    method: str
    value: str | None = None

    class Config:
        frozen = True


class PartialRecord(BaseModel):
    """
    A row after column mapping: partially typed, with its accumulated issues.

    Attributes:
        row_number: Source row offset
        fields: Standard target field to raw value
        custom_fields: Custom field name to coerced value
        result_columns: Antibiotic result columns detected in the row
        unmapped: Source columns that matched no target (kept for audit)
        issues: Mapping issues attached to the row
    """

    row_number: int = Field(..., ge=0)
    fields: dict[str, str | None] = Field(default_factory=dict)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    result_columns: list[ResultColumn] = Field(default_factory=list)
    unmapped: dict[str, str | None] = Field(default_factory=dict)
    issues: list[QualityIssue] = Field(default_factory=list)

    @property
    def fatal(self) -> bool:
        """Rows with a fatal issue are excluded from classification onward."""
        return any(issue.severity == "fatal" for issue in self.issues)

    def get(self, field_name: str) -> str | None:
        value = self.fields.get(field_name)
        if value is None:
            return None
        value = value.strip()
        return value or None
