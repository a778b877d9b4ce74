"""
EnumValidator: the value must be one of the declared allowed values.
"""

from typing import Any

from amr_ingest.core.models import CustomFieldSpec

from .base_validator import BaseValidator


class EnumValidator(BaseValidator):
    """
    Case- and whitespace-insensitive; returns the declared spelling, so
    "IN", "in" and " In " all become the template's "in".
    """

    rule_type = "enum"

    def __init__(self, spec: CustomFieldSpec, dayfirst: bool = False):
        super().__init__(spec, dayfirst)
        self.allowed = {str(v).strip().lower(): str(v) for v in spec.allowed_values or ()}

    @classmethod
    def applies_to(cls, spec: CustomFieldSpec) -> bool:
        return spec.type == "enum"

    def check(self, value: Any) -> Any:
        declared = self.allowed.get(str(value).strip().lower())
        if declared is None:
            raise self.reject(f"'{value}' is not one of {sorted(self.allowed.values())}")
        return declared
