"""
Mapping resolver: RawRecord -> PartialRecord.

Applies a mapping template (or an auto-generated one) to each row: mapped
columns fill target slots, antibiotic-result columns are routed to the
classifier, custom fields are checked by the rule engine and everything
else is kept in the unmapped bag.
"""

import threading
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from amr_ingest.core.errors import MappingError
from amr_ingest.core.models import (
    STANDARD_FIELDS,
    MappingTemplate,
    PartialRecord,
    QualityIssue,
    RawRecord,
    ResultColumn,
)
from amr_ingest.core.rules import RuleEngine
from amr_ingest.observability.logger import get_logger
from amr_ingest.reference import ReferenceDataService

from .column_matcher import ColumnMatcher
from .result_columns import ResultColumnPattern

logger = get_logger(__name__)

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("organism", "specimen_type", "collection_date")
AUTO_OWNER = "auto"


@dataclass(frozen=True)
class ColumnPlan:
    """How the columns of one header row are routed."""

    template: MappingTemplate
    targets: dict[str, str]
    result_columns: dict[str, tuple[str, str]]
    unmapped: tuple[str, ...]
    required: tuple[str, ...]
    missing_required: tuple[str, ...]
    rule_engine: RuleEngine = field(repr=False)


class MappingResolver:
    """
    Resolves raw rows into partially-typed records.

    Args:
        reference: Reference data used to recognize antibiotic result columns
        matcher: Column matcher for auto-map mode
        required_fields: Fields every row must map (templates may override)
        dayfirst: Read ambiguous custom-field dates day first
    """

    def __init__(
        self,
        reference: ReferenceDataService | None = None,
        matcher: ColumnMatcher | None = None,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
        dayfirst: bool = False,
    ):
        self.reference = reference
        self.matcher = matcher or ColumnMatcher()
        self.result_pattern = ResultColumnPattern(reference)
        self.required_fields = tuple(required_fields)
        self.dayfirst = dayfirst
        self._plans: dict[tuple, ColumnPlan] = {}
        self._lock = threading.Lock()

    def resolve(
        self, records: Iterable[RawRecord], template: MappingTemplate | None = None
    ) -> Iterator[PartialRecord]:
        """
        Resolve a record stream.

        Args:
            records: RawRecord stream from the parser
            template: Mapping template; None runs auto-map mode

        Yields:
            One PartialRecord per input row, fatal rows included
        """
        for record in records:
            yield self.resolve_record(record, template)

    def resolve_record(
        self, record: RawRecord, template: MappingTemplate | None = None
    ) -> PartialRecord:
        """Resolve a single row. Safe to call from several worker threads."""
        plan = self.plan(list(record.values), template)

        fields: dict[str, str | None] = {}
        custom_values: dict[str, str | None] = {}
        custom_names = {spec.name for spec in plan.template.custom_fields}
        for column, target in plan.targets.items():
            value = record.values.get(column)
            if target in custom_names:
                custom_values[target] = value
            else:
                fields[target] = value

        result_columns = [
            ResultColumn(
                column=column,
                antibiotic=antibiotic,
                method=method,
                value=record.values.get(column),
            )
            for column, (antibiotic, method) in plan.result_columns.items()
        ]
        unmapped = {column: record.values.get(column) for column in plan.unmapped}

        issues: list[QualityIssue] = []
        for target in plan.missing_required:
            issues.append(QualityIssue(**MappingError(
                target, f"Required field '{target}' is not mapped to any source column",
                severity="fatal",
            ).to_issue()))
        for target in plan.required:
            if target in plan.missing_required:
                continue
            value = fields.get(target)
            if value is None or not value.strip():
                issues.append(QualityIssue(**MappingError(
                    target, f"Required field '{target}' is empty", severity="fatal",
                ).to_issue()))

        custom_fields, custom_issues = plan.rule_engine.validate_fields(custom_values)
        issues.extend(custom_issues)

        partial = PartialRecord(
            row_number=record.row_number,
            fields=fields,
            custom_fields=custom_fields,
            result_columns=result_columns,
            unmapped=unmapped,
            issues=issues,
        )
        if partial.fatal:
            logger.debug(f"Row {record.row_number} is fatal after mapping: {len(issues)} issue(s)")
        return partial

    def plan(self, headers: list[str], template: MappingTemplate | None = None) -> ColumnPlan:
        """Build (or reuse) the column routing for a header row."""
        cache_key = (
            template.key + (template.version, id(template)) if template is not None else None,
            tuple(headers),
        )
        with self._lock:
            cached = self._plans.get(cache_key)
        if cached is not None:
            return cached

        if template is None:
            template = self.auto_template(headers)

        targets: dict[str, str] = {}
        result_columns: dict[str, tuple[str, str]] = {}
        unmapped: list[str] = []
        for header in headers:
            if header in template.columns:
                targets[header] = template.columns[header]
                continue
            match = self.result_pattern.match(header)
            if match is not None:
                result_columns[header] = (match.antibiotic, match.method)
            else:
                unmapped.append(header)

        required = tuple(
            template.required_fields
            if template.required_fields is not None
            else self.required_fields
        )
        mapped = set(targets.values())
        missing = tuple(target for target in required if target not in mapped)
        if missing:
            logger.warning(
                f"Template {template.owner}/{template.name} leaves required fields unmapped: "
                f"{', '.join(missing)}"
            )

        plan = ColumnPlan(
            template=template,
            targets=targets,
            result_columns=result_columns,
            unmapped=tuple(unmapped),
            required=required,
            missing_required=missing,
            rule_engine=RuleEngine(template.custom_fields, dayfirst=self.dayfirst),
        )
        with self._lock:
            self._plans[cache_key] = plan
        return plan

    def auto_template(
        self, headers: Iterable[str], owner: str = AUTO_OWNER, name: str = "auto-map"
    ) -> MappingTemplate:
        """
        Generate a template by matching headers to standard fields.

        Antibiotic result columns are excluded from matching. The generated
        template can be saved by the caller for reuse.
        """
        candidates = [h for h in headers if self.result_pattern.match(h) is None]
        columns = self.matcher.match_all(candidates)
        columns = {h: t for h, t in columns.items() if t in STANDARD_FIELDS}
        logger.info(
            f"Auto-mapped {len(columns)} of {len(candidates)} non-result columns",
            extra={"mapping": columns},
        )
        return MappingTemplate(owner=owner, name=name, columns=columns)
