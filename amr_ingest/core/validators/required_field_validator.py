"""
RequiredFieldValidator: a field declared required must have a value.
"""

from typing import Any

from amr_ingest.core.models import CustomFieldSpec

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    rule_type = "required"

    @classmethod
    def applies_to(cls, spec: CustomFieldSpec) -> bool:
        return spec.required

    def validate(self, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise self.reject("value is required but the cell is empty")
        return value

    def check(self, value: Any) -> Any:
        return value
