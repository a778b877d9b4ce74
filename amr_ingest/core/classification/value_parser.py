"""
Parsing of antibiotic result cells.

A cell is either a category token (optionally carrying the measurement it
was derived from) or a raw measurement:

    "R"            -> category R
    "r(<=4)"       -> category R, raw <=4
    "S 0.25"       -> category S, raw 0.25
    ">=32 mg/L"    -> raw >=32 (mg/L)
    "22mm"         -> raw 22 (mm)
    "0.5/9.5"      -> raw 0.5 (combination agents report the first component)
"""

import re
from dataclasses import dataclass

from amr_ingest.core.models import RawValue

CATEGORY_WORDS: dict[str, str] = {
    "S": "S",
    "I": "I",
    "R": "R",
    "NS": "NS",
    "U": "U",
    "SUSCEPTIBLE": "S",
    "SENSITIVE": "S",
    "INTERMEDIATE": "I",
    "RESISTANT": "R",
    "NONSUSCEPTIBLE": "NS",
    "NON-SUSCEPTIBLE": "NS",
    "UNKNOWN": "U",
}

OPERATOR_ALIASES: dict[str, str] = {
    "≤": "<=",
    "≥": ">=",
    "=<": "<=",
    "=>": ">=",
    "==": "=",
}

_NUMBER = re.compile(
    r"^(?P<op><=|>=|=<|=>|==|<|>|=|≤|≥)?\s*"
    r"(?P<num>\d+(?:[.,]\d*)?|[.,]\d+)(?:[eE](?P<exp>[+-]?\d+))?"
    r"(?:\s*/\s*\d+(?:[.,]\d+)?)?"
    r"\s*(?P<unit>mg/l|[µμu]g/ml|mcg/ml|mm)?$",
    re.IGNORECASE,
)

_CATEGORY = re.compile(
    r"^(?P<cat>[A-Za-z][A-Za-z\-]*)"
    r"(?:\s*[\(\[]\s*(?P<bracketed>[^)\]]*?)\s*[\)\]]|[\s:,;]+(?P<trailing>.+))?$"
)


@dataclass(frozen=True)
class ParsedValue:
    """Outcome of parsing one non-empty cell."""

    category: str | None = None
    raw_value: RawValue | None = None


class UnparseableValue(ValueError):
    """The cell is neither a category token nor a measurement."""


def parse_measurement(text: str) -> RawValue | None:
    """Parse a raw measurement; None when the text is not one."""
    m = _NUMBER.match(text.strip())
    if not m:
        return None
    number = float(m.group("num").replace(",", "."))
    if m.group("exp"):
        number *= 10 ** int(m.group("exp"))
    operator = m.group("op") or "="
    operator = OPERATOR_ALIASES.get(operator, operator)
    unit = m.group("unit")
    return RawValue(number=number, operator=operator, unit=unit)


def parse_category(text: str) -> str | None:
    """Map a category token or word (case-insensitive) to S/I/R/NS/U."""
    return CATEGORY_WORDS.get(text.strip().upper())


def parse_value(text: str | None) -> ParsedValue | None:
    """
    Parse a result cell.

    Returns:
        None for an empty cell, otherwise the parsed category and/or raw value

    Raises:
        UnparseableValue: If the cell is neither a category nor a measurement
    """
    if text is None or not text.strip():
        return None
    text = text.strip()

    raw = parse_measurement(text)
    if raw is not None:
        return ParsedValue(raw_value=raw)

    m = _CATEGORY.match(text)
    if m:
        category = parse_category(m.group("cat"))
        if category is not None:
            embedded = m.group("bracketed") if m.group("bracketed") is not None else m.group("trailing")
            if embedded is None or not embedded.strip():
                return ParsedValue(category=category)
            raw = parse_measurement(embedded)
            if raw is not None:
                return ParsedValue(category=category, raw_value=raw)

    raise UnparseableValue(f"'{text}' is neither a category (S/I/R/NS/U) nor a measurement")
