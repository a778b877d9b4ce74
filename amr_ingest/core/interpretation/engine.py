"""
Breakpoint interpretation of antibiotic result units.

Raw measurements are converted to S/I/R with the most specific applicable
breakpoint rule. Pre-interpreted categories are accepted as reported and
cross-checked against an accompanying measurement when there is one.
"""

from amr_ingest.core.errors import InterpretationDisagreement, InterpretationGap
from amr_ingest.core.models import (
    AntibioticResultUnit,
    BreakpointRule,
    NormalizedIsolateUnit,
    QualityIssue,
    RawValue,
)
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger
from amr_ingest.reference import ReferenceDataService

logger = get_logger(__name__)

# Censored values sit just beside their bound: "<4" is below 4, ">4" above it
_OPERATOR_SHIFT = {"<": -1, "<=": 0, "=": 0, ">=": 0, ">": 1}

# Categories compatible with a derived category
_AGREES_WITH = {
    "S": {"S"},
    "I": {"I"},
    "R": {"R"},
    "NS": {"I", "R"},
    "U": {"S", "I", "R"},
}


def categorize(raw: RawValue, rule: BreakpointRule) -> str:
    """
    Derive S, I or R for a measurement under one rule.

    MIC (lower is more susceptible), inclusive boundary:
        value <= susceptible -> S, value >= resistant -> R, otherwise I
    Zone diameter (higher is more susceptible), inclusive boundary:
        value >= susceptible -> S, value <= resistant -> R, otherwise I
    The exclusive boundary uses strict comparisons, so a value exactly on a
    threshold falls into the next category.

    A censored value is interpreted at its bound, offset by an infinitesimal
    in the direction of its operator, so "<=2" and "<2" differ exactly when
    the boundary flag says they should.
    """
    value = (raw.number, _OPERATOR_SHIFT[raw.operator])
    susceptible = (rule.susceptible, 0)
    resistant = (rule.resistant, 0)

    if rule.scale == "zone":
        # Mirror the zone scale so the MIC comparisons below apply
        value = (-value[0], -value[1])
        susceptible = (-rule.susceptible, 0)
        resistant = (-rule.resistant, 0)

    if rule.boundary == "inclusive":
        if value <= susceptible:
            return "S"
        if value >= resistant:
            return "R"
    else:
        if value < susceptible:
            return "S"
        if value > resistant:
            return "R"
    return "I"


class InterpretationEngine:
    """
    Applies breakpoint rules to every pending result unit of an isolate.

    Stateless apart from the injected reference data; interpret() never
    mutates its input and returns the same output for the same input.
    """

    def __init__(self, reference: ReferenceDataService):
        self.reference = reference

    def interpret(self, isolate: NormalizedIsolateUnit) -> NormalizedIsolateUnit:
        """
        Interpret an isolate's result units.

        Returns:
            A new isolate whose units are each either interpreted with one
            category or carry a non-committable status
        """
        issues = list(isolate.issues)
        results = []
        for unit in isolate.results:
            interpreted, unit_issues = self.interpret_result(isolate, unit)
            results.append(interpreted)
            issues.extend(unit_issues)
            metrics.increment_counter(
                metrics.result_units_total,
                status=interpreted.status,
                provenance=interpreted.provenance,
            )
        return isolate.model_copy(update={"results": results, "issues": issues})

    def interpret_result(
        self, isolate: NormalizedIsolateUnit, unit: AntibioticResultUnit
    ) -> tuple[AntibioticResultUnit, list[QualityIssue]]:
        """Interpret one unit in the context of its isolate."""
        if unit.status != "pending":
            return unit, []
        if unit.provenance == "pre-interpreted":
            return self._check_reported(isolate, unit)
        return self._derive(isolate, unit)

    def _derive(
        self, isolate: NormalizedIsolateUnit, unit: AntibioticResultUnit
    ) -> tuple[AntibioticResultUnit, list[QualityIssue]]:
        try:
            rule = self._find_rule(isolate, unit, unit.method)
        except InterpretationGap as gap:
            return self._uninterpretable(unit, gap)

        if rule is None:
            return self._uninterpretable(unit, InterpretationGap(
                unit.source_column,
                f"no {unit.breakpoint_standard} {unit.breakpoint_version} {unit.method} "
                f"breakpoint for {isolate.organism}/{unit.antibiotic}",
                antibiotic=unit.antibiotic,
            ))

        category = categorize(unit.raw_value, rule)
        metrics.increment_counter(
            metrics.interpreted_categories_total, standard=rule.standard, category=category
        )
        logger.debug(
            f"Row {isolate.row_number} {unit.antibiotic}: {unit.raw_value} -> {category} "
            f"({rule.standard} {rule.version}, {rule.organism})"
        )
        return unit.model_copy(update={"category": category, "status": "interpreted"}), []

    def _check_reported(
        self, isolate: NormalizedIsolateUnit, unit: AntibioticResultUnit
    ) -> tuple[AntibioticResultUnit, list[QualityIssue]]:
        accepted = unit.model_copy(update={"status": "interpreted"})
        if unit.raw_value is None:
            return accepted, []

        method = unit.method if unit.method != "pre-interpreted" else "mic"
        try:
            rule = self._find_rule(isolate, unit, method)
        except InterpretationGap as gap:
            logger.debug(f"Row {isolate.row_number} {unit.antibiotic}: cross-check skipped: {gap}")
            return accepted, []
        if rule is None:
            return accepted, []

        derived = categorize(unit.raw_value, rule)
        if derived in _AGREES_WITH[unit.category]:
            return accepted, []

        issue = InterpretationDisagreement(
            unit.source_column,
            f"Reported {unit.category} but {method.upper()} {unit.raw_value} interprets as "
            f"{derived} under {rule.standard} {rule.version}",
            antibiotic=unit.antibiotic,
        )
        return accepted, [QualityIssue(**issue.to_issue())]

    def _find_rule(
        self, isolate: NormalizedIsolateUnit, unit: AntibioticResultUnit, method: str
    ) -> BreakpointRule | None:
        """
        Raises:
            InterpretationGap: If the lookup is impossible or ambiguous
        """
        if not unit.breakpoint_standard or not unit.breakpoint_version:
            raise InterpretationGap(
                unit.source_column, "no breakpoint standard/version declared",
                antibiotic=unit.antibiotic,
            )
        if not isolate.organism:
            raise InterpretationGap(
                "organism", "organism missing; breakpoints cannot be selected",
                antibiotic=unit.antibiotic,
            )
        return self.reference.lookup_breakpoint(
            isolate.organism,
            unit.antibiotic,
            isolate.specimen_type,
            method,
            unit.breakpoint_standard,
            unit.breakpoint_version,
            on_date=isolate.collection_date,
        )

    @staticmethod
    def _uninterpretable(
        unit: AntibioticResultUnit, gap: InterpretationGap
    ) -> tuple[AntibioticResultUnit, list[QualityIssue]]:
        return unit.model_copy(update={"status": "uninterpretable", "category": None}), [
            QualityIssue(**gap.to_issue())
        ]
