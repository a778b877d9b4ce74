"""
RegexValidator: the raw cell text must fully match the declared pattern.
"""

import re
from typing import Any

from amr_ingest.core.models import CustomFieldSpec

from .base_validator import BaseValidator


class RegexValidator(BaseValidator):
    """
    Checks the text as written in the source, before type coercion, so a
    pattern like ``^OB-[0-9]{4}-[0-9]{2,3}$`` sees the lab's own spelling.
    """

    rule_type = "pattern"

    def __init__(self, spec: CustomFieldSpec, dayfirst: bool = False):
        super().__init__(spec, dayfirst)
        self.pattern = re.compile(spec.pattern or "")

    @classmethod
    def applies_to(cls, spec: CustomFieldSpec) -> bool:
        return bool(spec.pattern)

    def check(self, value: Any) -> Any:
        text = value.strip() if isinstance(value, str) else str(value)
        if not self.pattern.fullmatch(text):
            raise self.reject(f"'{text}' does not match {self.pattern.pattern}")
        return value
