"""
Breakpoint rule table with most-specific-match resolution.
"""

from collections import defaultdict
from datetime import date

from amr_ingest.core.errors import InterpretationGap
from amr_ingest.core.models import BreakpointRule
from amr_ingest.utils.text import normalize_name


class BreakpointTable:
    """
    Read-only index of BreakpointRule entries.

    Resolution prefers the most specific rule: organism code over organism
    group, a named specimen type over "any specimen", and an exact method
    over the MIC rule used for E-test. Two candidates with the same
    specificity are a true tie and raise InterpretationGap; the table never
    guesses between them.
    """

    def __init__(self, rules: list[BreakpointRule] | None = None):
        self._rules: tuple[BreakpointRule, ...] = tuple(rules or ())
        self._by_antibiotic: dict[str, list[BreakpointRule]] = defaultdict(list)
        for rule in self._rules:
            self._by_antibiotic[normalize_name(rule.antibiotic)].append(rule)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> tuple[BreakpointRule, ...]:
        return self._rules

    def candidates(
        self,
        organism_code: str,
        organism_group: str | None,
        antibiotic: str,
        specimen_type: str | None,
        method: str,
        standard: str,
        version: str,
        on_date: date | None = None,
    ) -> list[tuple[tuple[int, int, int], BreakpointRule]]:
        """Return every applicable rule paired with its specificity score."""
        organism_key = normalize_name(organism_code)
        group_key = normalize_name(organism_group) if organism_group else None
        specimen_key = normalize_name(specimen_type) if specimen_type else None
        standard_key = standard.strip().lower()
        version_key = version.strip().lower()

        matches = []
        for rule in self._by_antibiotic.get(normalize_name(antibiotic), ()):
            if rule.standard.lower() != standard_key or rule.version.lower() != version_key:
                continue
            if not rule.in_effect(on_date):
                continue

            rule_organism = normalize_name(rule.organism)
            if rule_organism == organism_key:
                organism_score = 2
            elif group_key is not None and rule_organism == group_key:
                organism_score = 1
            else:
                continue

            if rule.specimen_type is None:
                specimen_score = 0
            elif specimen_key is not None and normalize_name(rule.specimen_type) == specimen_key:
                specimen_score = 1
            else:
                continue

            if rule.method == method:
                method_score = 1
            elif method == "etest" and rule.method == "mic":
                method_score = 0
            else:
                continue

            matches.append(((organism_score, specimen_score, method_score), rule))
        return matches

    def lookup(
        self,
        organism_code: str,
        organism_group: str | None,
        antibiotic: str,
        specimen_type: str | None,
        method: str,
        standard: str,
        version: str,
        on_date: date | None = None,
    ) -> BreakpointRule | None:
        """
        Resolve the single most specific rule.

        Returns:
            The matching rule, or None when nothing applies

        Raises:
            InterpretationGap: If several rules tie for most specific
        """
        matches = self.candidates(
            organism_code, organism_group, antibiotic, specimen_type,
            method, standard, version, on_date,
        )
        if not matches:
            return None

        best = max(score for score, _ in matches)
        winners = [rule for score, rule in matches if score == best]
        if len(winners) > 1:
            raise InterpretationGap(
                "breakpoint",
                f"{len(winners)} equally specific {standard} {version} rules for "
                f"{organism_code}/{antibiotic} ({method})",
                antibiotic=antibiotic,
            )
        return winners[0]
