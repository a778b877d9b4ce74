"""
Validator & quality scorer.

Each record is checked against independent, all-or-nothing check
categories; the score is the weighted fraction of categories passed.
"""

import threading
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date

from amr_ingest.core.errors import ValidationIssue
from amr_ingest.core.models import (
    BatchQualitySummary,
    NormalizedIsolateUnit,
    QualityAssessment,
    QualityIssue,
)
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger
from amr_ingest.reference import ReferenceDataService

logger = get_logger(__name__)

CHECKS: tuple[str, ...] = (
    "reference_codes",
    "completeness",
    "consistency",
    "uniqueness",
    "interpretation",
)

COMPLETENESS_FIELDS: tuple[str, ...] = ("collection_date", "specimen_source", "facility")


class QualityScorer:
    """
    Scores normalized isolates, one QualityAssessment per record.

    One scorer instance covers one batch. record_checks() may run on worker
    threads; finalize() holds the batch's duplicate-key set (lock-guarded)
    and is called in row order, so the same file always flags the same rows.

    Args:
        reference: Reference data for organism/antibiotic code checks
        weights: Check name to weight (missing checks weigh 1.0)
        min_collection_date: Earliest plausible collection date
        completeness_threshold: Batch completeness % below which a warning is raised
        completeness_fields: Fields the completeness check requires
        today: Reference date for the "not in the future" check
    """

    def __init__(
        self,
        reference: ReferenceDataService,
        weights: dict[str, float] | None = None,
        min_collection_date: date | None = None,
        completeness_threshold: float = 80.0,
        completeness_fields: Sequence[str] = COMPLETENESS_FIELDS,
        today: date | None = None,
    ):
        unknown = set(weights or {}) - set(CHECKS)
        if unknown:
            raise ValueError(f"Unknown quality checks: {sorted(unknown)}")
        self.reference = reference
        self.weights = {check: float((weights or {}).get(check, 1.0)) for check in CHECKS}
        if sum(self.weights.values()) <= 0:
            raise ValueError("At least one quality check must have a positive weight")
        self.min_collection_date = min_collection_date
        self.completeness_threshold = completeness_threshold
        self.completeness_fields = tuple(completeness_fields)
        self.today = today
        self._seen_keys: set[tuple] = set()
        self._lock = threading.Lock()

    def assess(self, unit: NormalizedIsolateUnit) -> QualityAssessment:
        """
        Run every check on one record.

        Upstream issues on the record are carried into the assessment so a
        single object holds everything reported for the row.
        """
        return self.finalize(unit, self.record_checks(unit))

    def record_checks(self, unit: NormalizedIsolateUnit) -> dict[str, list[QualityIssue]]:
        """
        Checks that depend on the record alone; safe on any worker thread.

        Returns:
            Check name to issues, without the uniqueness check
        """
        return {
            "reference_codes": self._check_reference_codes(unit),
            "completeness": self._check_completeness(unit),
            "consistency": self._check_consistency(unit),
            "interpretation": self._check_interpretation(unit),
        }

    def finalize(
        self, unit: NormalizedIsolateUnit, checks: dict[str, list[QualityIssue]]
    ) -> QualityAssessment:
        """
        Add the uniqueness check and score the record.

        Records must be finalized in row order: the first occurrence of a
        duplicate key is the one kept clean.
        """
        results = {
            check: self._check_uniqueness(unit) if check == "uniqueness" else checks.get(check, [])
            for check in CHECKS
        }

        issues = list(unit.issues)
        passed, failed = [], []
        for check, check_issues in results.items():
            if check_issues:
                failed.append(check)
                issues.extend(check_issues)
            else:
                passed.append(check)

        total = sum(self.weights.values())
        score = sum(self.weights[check] for check in passed) / total

        for issue in issues:
            metrics.record_quality_issue(issue.kind, issue.severity)
        logger.debug(f"Row {unit.row_number}: score={score:.2f} failed={failed}")

        return QualityAssessment(
            row_number=unit.row_number,
            score=round(score, 6),
            issues=tuple(issues),
            checks_passed=tuple(passed),
            checks_failed=tuple(failed),
        )

    # =======================
    # CHECKS
    # =======================

    def _check_reference_codes(self, unit: NormalizedIsolateUnit) -> list[QualityIssue]:
        issues = []
        if unit.organism and self.reference.lookup_organism(unit.organism) is None:
            issues.append(self._issue(
                "unknown_code", "organism", f"Unknown organism code '{unit.organism}'"
            ))
        for antibiotic in dict.fromkeys(result.antibiotic for result in unit.results):
            if self.reference.lookup_antibiotic(antibiotic) is None:
                issues.append(self._issue(
                    "unknown_code", "antibiotic", f"Unknown antibiotic code '{antibiotic}'",
                    antibiotic=antibiotic,
                ))
        return issues

    def _check_completeness(self, unit: NormalizedIsolateUnit) -> list[QualityIssue]:
        values = {**unit.isolate_fields(), **unit.extra}
        missing = [name for name in self.completeness_fields if values.get(name) in (None, "")]
        if not missing:
            return []
        return [self._issue(
            "incomplete", ",".join(missing), f"Missing {', '.join(missing)}", severity="info"
        )]

    def _check_consistency(self, unit: NormalizedIsolateUnit) -> list[QualityIssue]:
        collected = unit.collection_date
        if collected is None:
            return []
        today = self.today or date.today()
        if collected > today:
            return [self._issue(
                "inconsistent", "collection_date",
                f"Collection date {collected.isoformat()} is in the future",
            )]
        if self.min_collection_date is not None and collected < self.min_collection_date:
            return [self._issue(
                "inconsistent", "collection_date",
                f"Collection date {collected.isoformat()} is before "
                f"{self.min_collection_date.isoformat()}",
            )]
        return []

    @staticmethod
    def _result_key(unit: NormalizedIsolateUnit, antibiotic: str) -> tuple:
        organism = (unit.organism or "").strip().lower()
        return (unit.specimen_id, organism, antibiotic, unit.collection_date)

    def _check_uniqueness(self, unit: NormalizedIsolateUnit) -> list[QualityIssue]:
        if unit.fatal:
            return []
        issues = []
        with self._lock:
            for result in unit.results:
                key = self._result_key(unit, result.antibiotic)
                if key in self._seen_keys:
                    issues.append(self._issue(
                        "duplicate", result.source_column or "antibiotic",
                        f"Duplicate of an earlier {result.antibiotic} result for specimen "
                        f"{unit.specimen_id} collected {unit.collection_date}",
                        antibiotic=result.antibiotic,
                    ))
                else:
                    self._seen_keys.add(key)
        return issues

    def _check_interpretation(self, unit: NormalizedIsolateUnit) -> list[QualityIssue]:
        pending = [r for r in unit.results if r.status != "interpreted"]
        if not pending:
            return []
        return [self._issue(
            "not_interpreted", "results",
            f"{len(pending)} of {len(unit.results)} result(s) not interpreted: "
            + ", ".join(f"{r.antibiotic}={r.status}" for r in pending),
            severity="info",
        )]

    @staticmethod
    def _issue(
        kind: str,
        field: str,
        message: str,
        severity: str = "warning",
        antibiotic: str | None = None,
    ) -> QualityIssue:
        issue = ValidationIssue(field, message, severity=severity, antibiotic=antibiotic).to_issue()
        issue["kind"] = kind
        return QualityIssue(**issue)

    # =======================
    # BATCH AGGREGATE
    # =======================

    def summarize(self, assessments: Iterable[QualityAssessment]) -> BatchQualitySummary:
        """
        Aggregate record assessments into the batch summary.

        The batch is below threshold when the percentage of records passing
        the completeness check is under the configured threshold.
        """
        assessments = list(assessments)
        if not assessments:
            return BatchQualitySummary(threshold=self.completeness_threshold)

        severity_counts: Counter = Counter()
        kind_counts: Counter = Counter()
        for assessment in assessments:
            for issue in assessment.issues:
                severity_counts[issue.severity] += 1
                kind_counts[issue.kind] += 1

        complete = sum(1 for a in assessments if "completeness" in a.checks_passed)
        completeness = 100.0 * complete / len(assessments)
        mean_score = sum(a.score for a in assessments) / len(assessments)

        return BatchQualitySummary(
            record_count=len(assessments),
            mean_score=round(min(mean_score, 1.0), 6),
            completeness=round(completeness, 2),
            severity_counts=dict(severity_counts),
            kind_counts=dict(kind_counts),
            threshold=self.completeness_threshold,
            below_threshold=completeness < self.completeness_threshold,
        )

    def remember(self, units: Iterable[NormalizedIsolateUnit]) -> None:
        """Register already-assessed records (resuming a paused batch)."""
        with self._lock:
            for unit in units:
                if unit.fatal:
                    continue
                for result in unit.results:
                    self._seen_keys.add(self._result_key(unit, result.antibiotic))

    def reset(self) -> None:
        """Forget duplicate keys (start of a new batch)."""
        with self._lock:
            self._seen_keys.clear()
