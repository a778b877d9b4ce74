"""
Reference data models: organisms, antibiotics and breakpoint rules.

These are read-only; the engine never creates or mutates them.
"""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, model_validator

BreakpointMethod = Literal["mic", "disk", "etest"]


class Organism(BaseModel):
    """
    Attributes:
        code: Organism code (e.g. "eco")
        name: Display name (e.g. "Escherichia coli")
        group: Organism class used by group-level breakpoints
               (e.g. "Enterobacterales")
        synonyms: Alternative spellings seen in lab exports ("E.coli")
    """

    code: str = Field(..., min_length=1)
    name: str
    group: str | None = None
    synonyms: list[str] = Field(default_factory=list)

    class Config:
        frozen = True


class Antibiotic(BaseModel):
    """
    Attributes:
        code: Antibiotic code (e.g. "GEN")
        name: Display name (e.g. "Gentamicin")
        synonyms: Alternative names or codes ("GM", "gentamycin")
    """

    code: str = Field(..., min_length=1)
    name: str
    synonyms: list[str] = Field(default_factory=list)

    class Config:
        frozen = True


class BreakpointRule(BaseModel):
    """
    Clinical breakpoint thresholds for one organism/antibiotic/method.

    MIC rules: value <= susceptible is S, value >= resistant is R (when
    resistant equals the first dilution above susceptible there is no I).
    Zone-diameter rules are mirrored: value >= susceptible is S, value <=
    resistant is R.

    boundary controls a value sitting exactly on a threshold: "inclusive"
    keeps it in the more susceptible category's favour at the S threshold,
    "exclusive" pushes it to the next category.

    Attributes:
        organism: Organism code or organism group the rule applies to
        antibiotic: Antibiotic code
        specimen_type: Specimen type, None applies to any specimen
        method: mic, disk or etest
        standard: Standard name (CLSI, EUCAST)
        version: Standard version
        effective_from: First collection date the rule applies to
        effective_to: Last collection date the rule applies to
        susceptible: S threshold
        resistant: R threshold
        boundary: "inclusive" (default) or "exclusive"
    """

    organism: str = Field(..., min_length=1)
    antibiotic: str = Field(..., min_length=1)
    specimen_type: str | None = None
    method: BreakpointMethod = "mic"
    standard: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    effective_from: date | None = None
    effective_to: date | None = None
    susceptible: float
    resistant: float
    boundary: Literal["inclusive", "exclusive"] = "inclusive"

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "organism": "Enterobacterales",
                "antibiotic": "GEN",
                "method": "mic",
                "standard": "CLSI",
                "version": "2024",
                "susceptible": 2,
                "resistant": 8,
            }
        }

    @model_validator(mode="after")
    def check_thresholds(self):
        if self.scale == "mic" and self.susceptible > self.resistant:
            raise ValueError("MIC rule requires susceptible <= resistant")
        if self.scale == "zone" and self.susceptible < self.resistant:
            raise ValueError("Zone-diameter rule requires susceptible >= resistant")
        if (
            self.effective_from is not None
            and self.effective_to is not None
            and self.effective_from > self.effective_to
        ):
            raise ValueError("effective_from must not be after effective_to")
        return self

    @property
    def scale(self) -> str:
        """Return "mic" when lower values are more susceptible, "zone" otherwise."""
        return "zone" if self.method == "disk" else "mic"

    def in_effect(self, on_date: date | None) -> bool:
        if on_date is None:
            return True
        if self.effective_from is not None and on_date < self.effective_from:
            return False
        if self.effective_to is not None and on_date > self.effective_to:
            return False
        return True
