"""
Detection of antibiotic-result columns in wide exports.

Wide exports name result columns after the antibiotic with an optional
method suffix: AMP_SIR, GEN_MIC, GEN_ND10, CIP_E, or a bare code (AMP).
"""

import re
from dataclasses import dataclass

from amr_ingest.reference import ReferenceDataService

# Header suffix (digits stripped, e.g. ND10 -> ND) to test method
METHOD_SUFFIXES: dict[str, str] = {
    "MIC": "mic",
    "NM": "mic",
    "ND": "disk",
    "ZD": "disk",
    "DD": "disk",
    "DISK": "disk",
    "ZONE": "disk",
    "E": "etest",
    "EE": "etest",
    "ETEST": "etest",
    "SIR": "pre-interpreted",
    "INT": "pre-interpreted",
    "RIS": "pre-interpreted",
}

# Bare codes with no suffix: the cell value decides between mic and a category
AUTO_METHOD = "auto"

_HEADER = re.compile(
    r"^\s*(?P<code>[A-Za-z][A-Za-z0-9]{1,11}?)"
    r"(?:[\s_\-.]+(?P<suffix>[A-Za-z]+)(?P<potency>\d+(?:\.\d+)?)?)?\s*$"
)
_UNKNOWN_CODE = re.compile(r"^[A-Z]{2,4}$")


@dataclass(frozen=True)
class ResultColumnMatch:
    column: str
    antibiotic: str
    method: str


class ResultColumnPattern:
    """
    Recognizes headers that carry one antibiotic result.

    A header with a method suffix qualifies when its code is a known
    antibiotic, or looks like a WHONET antibiotic code (2-4 letters) when
    the antibiotic is unknown; reference checks later flag unknown codes. A
    bare header qualifies only when it names a known antibiotic.
    """

    def __init__(self, reference: ReferenceDataService | None = None):
        self.reference = reference

    def match(self, header: str) -> ResultColumnMatch | None:
        m = _HEADER.match(header or "")
        if not m:
            return None

        code = m.group("code")
        suffix = m.group("suffix")
        known = self.reference.lookup_antibiotic(code) if self.reference else None
        antibiotic = known.code if known else code.upper()

        if suffix is None:
            if known is None:
                return None
            return ResultColumnMatch(header, antibiotic, AUTO_METHOD)

        method = METHOD_SUFFIXES.get(suffix.upper())
        if method is None:
            return None
        if known is None and not _UNKNOWN_CODE.match(code.upper()):
            return None
        return ResultColumnMatch(header, antibiotic, method)
