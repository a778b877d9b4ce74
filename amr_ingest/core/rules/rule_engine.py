"""
Rule engine for template-declared custom fields.

Builds one rule chain per CustomFieldSpec and applies the chains to a
row's custom field values. Failures become row-level MappingError issues
with the field's declared severity; nothing is raised.
"""

from collections.abc import Sequence
from typing import Any

from amr_ingest.core.errors import MappingError
from amr_ingest.core.models import CustomFieldSpec, QualityIssue
from amr_ingest.core.validators import RULE_CHAIN, BaseValidator, ValidationError


class RuleEngine:
    """
    Validates and coerces custom field values.

    Args:
        specs: Custom fields declared by the template
        dayfirst: Read ambiguous dates like 05/01/2024 as 5 January

    The first failing rule ends a field's chain, so each field yields at
    most one issue. A field that fails keeps its raw value for audit.
    """

    def __init__(self, specs: Sequence[CustomFieldSpec] = (), dayfirst: bool = False):
        self.specs = tuple(specs)
        self.chains: dict[str, list[BaseValidator]] = {
            spec.name: [rule(spec, dayfirst) for rule in RULE_CHAIN if rule.applies_to(spec)]
            for spec in self.specs
        }

    def __bool__(self) -> bool:
        return bool(self.specs)

    def validate_fields(
        self, values: dict[str, Any]
    ) -> tuple[dict[str, Any], list[QualityIssue]]:
        """
        Apply every chain to a row.

        Args:
            values: Custom field name to raw value; unmapped fields are absent

        Returns:
            Tuple of (coerced values, issues). Absent optional fields stay
            absent; blank cells become None.
        """
        coerced: dict[str, Any] = {}
        issues: list[QualityIssue] = []

        for spec in self.specs:
            if spec.name not in values and not spec.required:
                continue
            raw = values.get(spec.name)
            value = None if isinstance(raw, str) and not raw.strip() else raw
            try:
                for rule in self.chains[spec.name]:
                    value = rule.validate(value)
            except ValidationError as e:
                issues.append(QualityIssue(**MappingError(
                    spec.name, str(e), severity=spec.severity
                ).to_issue()))
                value = raw
            coerced[spec.name] = value

        return coerced, issues

    def rule_types(self, field_name: str) -> list[str]:
        """Rule types run for a field, in chain order."""
        return [rule.rule_type for rule in self.chains.get(field_name, [])]
