"""
MappingTemplate model: a reusable source-column to target-field mapping.
"""

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

CustomFieldType = Literal["string", "number", "date", "enum"]
Layout = Literal["wide", "long", "auto"]

# Canonical target fields a source column may map to
STANDARD_FIELDS: tuple[str, ...] = (
    "specimen_id",
    "patient_id",
    "organism",
    "specimen_type",
    "specimen_source",
    "collection_date",
    "facility",
    "host_species",
    "antibiotic",
    "method",
    "result_value",
    "interpretation",
    "breakpoint_standard",
    "breakpoint_version",
    "sex",
    "age",
    "ward",
)


class CustomFieldSpec(BaseModel):
    """
    A user-defined field declared by a template.

    Attributes:
        name: Target name of the custom field
        type: string, number, date or enum
        required: Whether a missing value is an issue
        allowed_values: Permitted values for enum fields
        pattern: Optional regex the raw value must match
        min: Optional numeric lower bound (inclusive)
        max: Optional numeric upper bound (inclusive)
        severity: Severity of a mismatch ("warning" by default)
    """

    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: CustomFieldType = "string"
    required: bool = False
    allowed_values: list[str] | None = None
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    severity: Literal["info", "warning", "fatal"] = "warning"

    class Config:
        frozen = True

    @model_validator(mode="after")
    def check_declaration(self):
        if self.type == "enum" and not self.allowed_values:
            raise ValueError(f"Custom field '{self.name}' of type enum requires allowed_values")
        if self.name in STANDARD_FIELDS:
            raise ValueError(f"Custom field '{self.name}' shadows a standard field")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Custom field '{self.name}' has an invalid pattern: {e}") from e
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Custom field '{self.name}' has min above max")
        return self


class MappingTemplate(BaseModel):
    """
    Named, versioned, reusable mapping owned by a user or organization.

    A running batch references a template snapshot and never mutates it;
    overrides go through clone_with().

    Attributes:
        owner: Owning user or organization
        name: Template name, unique per owner
        version: Version number, incremented by the template store
        columns: Source column to target field (standard or custom)
        custom_fields: Custom field declarations
        required_fields: Target fields a row must have mapped (None = engine default)
        breakpoint_standard: Declared standard for pre-interpreted values
        breakpoint_version: Declared standard version
        layout: wide, long, or auto detection
        locked: True once a committed batch references this version
        created_at: When this version was stored
    """

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    version: int = Field(1, gt=0)
    columns: dict[str, str] = Field(default_factory=dict)
    custom_fields: list[CustomFieldSpec] = Field(default_factory=list)
    required_fields: list[str] | None = None
    breakpoint_standard: str | None = None
    breakpoint_version: str | None = None
    layout: Layout = "auto"
    locked: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "owner": "regional-lab",
                "name": "whonet-wide",
                "version": 1,
                "columns": {
                    "Organism": "organism",
                    "Specimen": "specimen_type",
                    "Date": "collection_date",
                    "Ward type": "ward_type",
                },
                "custom_fields": [
                    {"name": "ward_type", "type": "enum", "allowed_values": ["in", "out"]}
                ],
                "breakpoint_standard": "CLSI",
                "breakpoint_version": "2024",
                "layout": "wide",
            }
        }

    @field_validator("columns")
    @classmethod
    def check_columns(cls, v: dict[str, str]) -> dict[str, str]:
        for source, target in v.items():
            if not source or not target:
                raise ValueError("Template columns must map non-empty names")
        return v

    @model_validator(mode="after")
    def check_targets(self):
        custom_names = {spec.name for spec in self.custom_fields}
        for source, target in self.columns.items():
            if target not in STANDARD_FIELDS and target not in custom_names:
                raise ValueError(
                    f"Column '{source}' maps to unknown target '{target}'"
                )
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.owner, self.name)

    @property
    def mapped_targets(self) -> set[str]:
        return set(self.columns.values())

    def custom_field(self, name: str) -> CustomFieldSpec | None:
        for spec in self.custom_fields:
            if spec.name == name:
                return spec
        return None

    def clone_with(self, **overrides: Any) -> "MappingTemplate":
        """Copy the template with overrides, leaving the original untouched."""
        data = self.model_dump()
        data.update(overrides)
        data["locked"] = False
        return MappingTemplate.model_validate(data)
