"""
RangeValidator: inclusive bounds for number fields.
"""

from typing import Any

from amr_ingest.core.models import CustomFieldSpec

from .base_validator import BaseValidator


class RangeValidator(BaseValidator):
    rule_type = "range"

    @classmethod
    def applies_to(cls, spec: CustomFieldSpec) -> bool:
        return spec.type == "number" and (spec.min is not None or spec.max is not None)

    def check(self, value: Any) -> Any:
        low, high = self.spec.min, self.spec.max
        if low is not None and value < low:
            raise self.reject(f"{value:g} is below the minimum {low:g}")
        if high is not None and value > high:
            raise self.reject(f"{value:g} is above the maximum {high:g}")
        return value
