"""
Custom-field rules.

RULE_CHAIN is the order rules run in for one field: presence first, then
the raw-text pattern, type coercion, and the checks on the coerced value.
"""

from .base_validator import BaseValidator, ValidationError
from .enum_validator import EnumValidator
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

RULE_CHAIN: tuple[type[BaseValidator], ...] = (
    RequiredFieldValidator,
    RegexValidator,
    TypeValidator,
    EnumValidator,
    RangeValidator,
)

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "RegexValidator",
    "TypeValidator",
    "EnumValidator",
    "RangeValidator",
    "RULE_CHAIN",
]
