"""
Field rules for template-declared custom fields.

A custom field is checked by a short chain of rules derived from its
CustomFieldSpec. Each rule receives the value left by the previous rule
(the raw cell text at the start of the chain) and returns it, coerced
where the rule normalizes values.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from amr_ingest.core.models import CustomFieldSpec


class ValidationError(Exception):
    """A custom-field value broke one rule of its chain."""

    def __init__(self, rule_type: str, field_name: str, message: str):
        self.rule_type = rule_type
        self.field_name = field_name
        self.message = message
        super().__init__(f"{field_name} ({rule_type}): {message}")


class BaseValidator(ABC):
    """
    One rule of a custom field's chain.

    Subclasses set rule_type, say through applies_to() whether a declaration
    needs them, and implement check(). An empty cell arrives as None and
    passes every rule except RequiredFieldValidator.
    """

    rule_type: ClassVar[str]

    def __init__(self, spec: CustomFieldSpec, dayfirst: bool = False):
        self.spec = spec
        self.dayfirst = dayfirst

    @property
    def field_name(self) -> str:
        return self.spec.name

    @classmethod
    def applies_to(cls, spec: CustomFieldSpec) -> bool:
        return True

    def validate(self, value: Any) -> Any:
        """
        Raises:
            ValidationError: If the value breaks the rule
        """
        if value is None:
            return None
        return self.check(value)

    @abstractmethod
    def check(self, value: Any) -> Any:
        ...

    def reject(self, message: str) -> ValidationError:
        return ValidationError(self.rule_type, self.field_name, message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.field_name})"
