"""
TypeValidator: coerces cell text to the declared custom-field type.
"""

import math
from typing import Any

from amr_ingest.utils.dates import parse_date

from .base_validator import BaseValidator


class TypeValidator(BaseValidator):
    """
    Coerces lab text to string, number or date.

    Delimited exports carry every cell as text; spreadsheet and structured
    sources may already hold numbers or dates, which are accepted as they
    are. Enum fields stay strings here and are checked by EnumValidator.
    """

    rule_type = "type"

    def check(self, value: Any) -> Any:
        declared = self.spec.type
        try:
            if declared == "number":
                return self._number(value)
            if declared == "date":
                return parse_date(value, dayfirst=self.dayfirst)
        except (TypeError, ValueError) as e:
            raise self.reject(f"cannot read {value!r} as a {declared}: {e}") from e
        return value.strip() if isinstance(value, str) else str(value)

    @staticmethod
    def _number(value: Any) -> float:
        if isinstance(value, bool):
            raise TypeError("booleans are not numbers")
        if isinstance(value, str):
            # Decimal commas are common in European lab exports
            value = value.strip().replace(",", ".")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("not a finite number")
        return number
