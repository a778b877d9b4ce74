"""
Value classifier: PartialRecord -> NormalizedIsolateUnit.

Decides per row whether data is wide (one unit per antibiotic result
column) or long (one unit from the antibiotic/result_value/interpretation
fields), and per cell whether the value is a raw measurement or a
pre-interpreted category.
"""

from amr_ingest.core.errors import (
    ClassificationError,
    MissingBreakpointStandard,
    ValidationIssue,
)
from amr_ingest.core.models import (
    AntibioticResultUnit,
    MappingTemplate,
    NormalizedIsolateUnit,
    PartialRecord,
    QualityIssue,
    ResultColumn,
)
from amr_ingest.observability.logger import get_logger
from amr_ingest.reference import ReferenceDataService
from amr_ingest.utils.dates import parse_date

from .value_parser import UnparseableValue, parse_category, parse_value

logger = get_logger(__name__)

ISOLATE_FIELDS = (
    "specimen_id",
    "patient_id",
    "organism",
    "specimen_type",
    "specimen_source",
    "facility",
    "host_species",
)

# Fields consumed while building result units rather than stored on the isolate
RESULT_FIELDS = frozenset({
    "antibiotic",
    "method",
    "result_value",
    "interpretation",
    "breakpoint_standard",
    "breakpoint_version",
    "collection_date",
})

METHOD_NAMES: dict[str, str] = {
    "mic": "mic",
    "nm": "mic",
    "disk": "disk",
    "disc": "disk",
    "zone": "disk",
    "nd": "disk",
    "kb": "disk",
    "etest": "etest",
    "e-test": "etest",
    "e": "etest",
    "gradient": "etest",
    "sir": "pre-interpreted",
    "interpretation": "pre-interpreted",
    "pre-interpreted": "pre-interpreted",
}

MEASURED_METHODS = ("mic", "disk", "etest")


def _issue(error: ClassificationError | ValidationIssue) -> QualityIssue:
    return QualityIssue(**error.to_issue())


class ValueClassifier:
    """
    Classifies the result cells of mapped rows.

    Args:
        template: Template of the batch (layout and declared breakpoint standard)
        default_standard: Standard used when neither row nor template declares one
        default_version: Version used when neither row nor template declares one
        reference: Optional reference data to resolve long-format antibiotic names
        dayfirst: Parse ambiguous dates as day/month
    """

    def __init__(
        self,
        template: MappingTemplate | None = None,
        default_standard: str | None = None,
        default_version: str | None = None,
        reference: ReferenceDataService | None = None,
        dayfirst: bool = False,
    ):
        self.template = template
        self.default_standard = default_standard
        self.default_version = default_version
        self.reference = reference
        self.dayfirst = dayfirst

    def classify(self, partial: PartialRecord) -> NormalizedIsolateUnit:
        """
        Build the isolate and its ordered result units.

        A fatal row is returned without results so its issues still reach
        the batch report.
        """
        issues = list(partial.issues)
        isolate = {name: partial.get(name) for name in ISOLATE_FIELDS}
        extra = {
            name: value
            for name, value in partial.fields.items()
            if name not in ISOLATE_FIELDS and name not in RESULT_FIELDS
        }

        collection_date = None
        date_text = partial.get("collection_date")
        if date_text is not None:
            try:
                collection_date = parse_date(date_text, dayfirst=self.dayfirst)
            except ValueError as e:
                issues.append(_issue(ValidationIssue("collection_date", str(e))))

        results: list[AntibioticResultUnit] = []
        if not partial.fatal:
            standard, version = self._declared_standard(partial)
            if self._layout(partial) == "wide":
                for column in partial.result_columns:
                    unit = self._classify_cell(column, standard, version, issues)
                    if unit is not None:
                        results.append(unit)
            else:
                unit = self._classify_long(partial, standard, version, issues)
                if unit is not None:
                    results.append(unit)

            pre_interpreted = [u for u in results if u.provenance == "pre-interpreted"]
            if pre_interpreted and (standard is None or version is None):
                issues.append(_issue(MissingBreakpointStandard(
                    "breakpoint_standard",
                    f"{len(pre_interpreted)} pre-interpreted result(s) without a declared "
                    "breakpoint standard and version",
                )))
            logger.debug(f"Row {partial.row_number}: classified {len(results)} result unit(s)")

        return NormalizedIsolateUnit(
            row_number=partial.row_number,
            collection_date=collection_date,
            extra=extra,
            custom_fields=dict(partial.custom_fields),
            results=results,
            issues=issues,
            **isolate,
        )

    def _declared_standard(self, partial: PartialRecord) -> tuple[str | None, str | None]:
        template = self.template
        standard = (
            partial.get("breakpoint_standard")
            or (template.breakpoint_standard if template else None)
            or self.default_standard
        )
        version = (
            partial.get("breakpoint_version")
            or (template.breakpoint_version if template else None)
            or self.default_version
        )
        return standard, version

    def _layout(self, partial: PartialRecord) -> str:
        if self.template is not None and self.template.layout != "auto":
            return self.template.layout
        if len(partial.result_columns) > 1:
            return "wide"
        if "antibiotic" in partial.fields:
            return "long"
        return "wide"

    def _classify_cell(
        self,
        column: ResultColumn,
        standard: str | None,
        version: str | None,
        issues: list[QualityIssue],
    ) -> AntibioticResultUnit | None:
        try:
            parsed = parse_value(column.value)
        except UnparseableValue as e:
            issues.append(_issue(ClassificationError(column.column, str(e), antibiotic=column.antibiotic)))
            return self._unclassifiable(column.antibiotic, column.method, column.column, column.value)
        if parsed is None:
            return None

        hint = column.method
        if parsed.category is not None:
            method = hint if hint in MEASURED_METHODS else "pre-interpreted"
            if parsed.raw_value is not None and method == "pre-interpreted":
                method = "mic"
            return AntibioticResultUnit(
                antibiotic=column.antibiotic,
                method=method,
                raw_value=parsed.raw_value,
                category=parsed.category,
                breakpoint_standard=standard,
                breakpoint_version=version,
                provenance="pre-interpreted",
                source_column=column.column,
                source_value=column.value,
            )

        if hint == "pre-interpreted":
            issues.append(_issue(ClassificationError(
                column.column,
                f"measurement '{column.value}' in an interpretation column",
                antibiotic=column.antibiotic,
            )))
            return self._unclassifiable(column.antibiotic, hint, column.column, column.value)

        return AntibioticResultUnit(
            antibiotic=column.antibiotic,
            method=hint if hint in MEASURED_METHODS else "mic",
            raw_value=parsed.raw_value,
            breakpoint_standard=standard,
            breakpoint_version=version,
            provenance="raw",
            source_column=column.column,
            source_value=column.value,
        )

    def _classify_long(
        self,
        partial: PartialRecord,
        standard: str | None,
        version: str | None,
        issues: list[QualityIssue],
    ) -> AntibioticResultUnit | None:
        value = partial.get("result_value")
        interpretation = partial.get("interpretation")
        if value is None and interpretation is None:
            return None

        antibiotic = partial.get("antibiotic")
        if antibiotic is None:
            issues.append(_issue(ClassificationError(
                "antibiotic", "result present but no antibiotic named in the row"
            )))
            return None
        antibiotic = self._antibiotic_code(antibiotic)

        method_text = partial.get("method")
        method = METHOD_NAMES.get(method_text.lower(), None) if method_text else "mic"
        if method is None:
            issues.append(_issue(ClassificationError(
                "method", f"unknown test method '{method_text}'", antibiotic=antibiotic
            )))
            return self._unclassifiable(antibiotic, "mic", "result_value", value or interpretation)

        if interpretation is not None:
            category = parse_category(interpretation)
            if category is None:
                issues.append(_issue(ClassificationError(
                    "interpretation",
                    f"'{interpretation}' is not a category (S/I/R/NS/U)",
                    antibiotic=antibiotic,
                )))
                return self._unclassifiable(antibiotic, method, "interpretation", interpretation)
            raw_value = None
            if value is not None:
                try:
                    parsed = parse_value(value)
                except UnparseableValue:
                    parsed = None
                raw_value = parsed.raw_value if parsed is not None else None
                if raw_value is None:
                    issues.append(_issue(ValidationIssue(
                        "result_value",
                        f"ignored unparseable measurement '{value}' next to category {category}",
                        antibiotic=antibiotic,
                    )))
            return AntibioticResultUnit(
                antibiotic=antibiotic,
                method="mic" if method == "pre-interpreted" and raw_value is not None else method,
                raw_value=raw_value,
                category=category,
                breakpoint_standard=standard,
                breakpoint_version=version,
                provenance="pre-interpreted",
                source_column="interpretation",
                source_value=interpretation if value is None else f"{interpretation} ({value})",
            )

        column = ResultColumn(column="result_value", antibiotic=antibiotic, method=method, value=value)
        return self._classify_cell(column, standard, version, issues)

    def _antibiotic_code(self, name: str) -> str:
        if self.reference is not None:
            known = self.reference.lookup_antibiotic(name)
            if known is not None:
                return known.code
        return name.strip().upper()

    @staticmethod
    def _unclassifiable(
        antibiotic: str, method: str, column: str, value: str | None
    ) -> AntibioticResultUnit:
        return AntibioticResultUnit(
            antibiotic=antibiotic,
            method=method if method in MEASURED_METHODS or method == "pre-interpreted" else "mic",
            provenance="raw",
            status="unclassifiable",
            source_column=column,
            source_value=value,
        )
