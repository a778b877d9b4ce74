"""
Reference-data capability consumed by the engine.

The engine never owns organism, antibiotic or breakpoint tables; the host
platform supplies them through the ReferenceDataService protocol. Lookups
are read-only and safe for unlimited concurrent readers.
"""

from datetime import date
from typing import Protocol, runtime_checkable

from amr_ingest.core.models import Antibiotic, BreakpointRule, Organism
from amr_ingest.utils.text import normalize_name

from .breakpoints import BreakpointTable


@runtime_checkable
class ReferenceDataService(Protocol):
    """Interface for organism, antibiotic and breakpoint lookups."""

    def lookup_organism(self, code: str) -> Organism | None:
        """Resolve an organism by code, name or synonym; None if unknown."""
        ...

    def lookup_antibiotic(self, code: str) -> Antibiotic | None:
        """Resolve an antibiotic by code, name or synonym; None if unknown."""
        ...

    def lookup_breakpoint(
        self,
        organism: str,
        antibiotic: str,
        specimen_type: str | None,
        method: str,
        standard: str,
        version: str,
        on_date: date | None = None,
    ) -> BreakpointRule | None:
        """Return the most specific applicable rule; None when nothing applies."""
        ...


class InMemoryReferenceData:
    """
    ReferenceDataService backed by in-memory tables.

    Organisms and antibiotics resolve by code, display name or any synonym,
    compared in normalized form ("E. coli" == "e.coli" == "ECOLI").
    """

    def __init__(
        self,
        organisms: list[Organism] | None = None,
        antibiotics: list[Antibiotic] | None = None,
        breakpoints: list[BreakpointRule] | None = None,
    ):
        self._organisms: dict[str, Organism] = {}
        self._antibiotics: dict[str, Antibiotic] = {}
        for organism in organisms or ():
            self._index(self._organisms, organism, [organism.code, organism.name, *organism.synonyms])
        for antibiotic in antibiotics or ():
            self._index(
                self._antibiotics, antibiotic, [antibiotic.code, antibiotic.name, *antibiotic.synonyms]
            )
        self.breakpoints = BreakpointTable(breakpoints)

    @staticmethod
    def _index(index: dict, item, names: list[str]) -> None:
        for name in names:
            key = normalize_name(name)
            # First declaration wins so a code never gets shadowed by a synonym
            if key and key not in index:
                index[key] = item

    @property
    def organisms(self) -> list[Organism]:
        return list({o.code: o for o in self._organisms.values()}.values())

    @property
    def antibiotics(self) -> list[Antibiotic]:
        return list({a.code: a for a in self._antibiotics.values()}.values())

    def antibiotic_names(self) -> list[str]:
        """All normalized codes, names and synonyms that identify an antibiotic."""
        return list(self._antibiotics.keys())

    def lookup_organism(self, code: str) -> Organism | None:
        if not code:
            return None
        return self._organisms.get(normalize_name(code))

    def lookup_antibiotic(self, code: str) -> Antibiotic | None:
        if not code:
            return None
        return self._antibiotics.get(normalize_name(code))

    def lookup_breakpoint(
        self,
        organism: str,
        antibiotic: str,
        specimen_type: str | None,
        method: str,
        standard: str,
        version: str,
        on_date: date | None = None,
    ) -> BreakpointRule | None:
        known = self.lookup_organism(organism)
        organism_code = known.code if known else organism
        organism_group = known.group if known else None

        known_antibiotic = self.lookup_antibiotic(antibiotic)
        antibiotic_code = known_antibiotic.code if known_antibiotic else antibiotic

        return self.breakpoints.lookup(
            organism_code, organism_group, antibiotic_code, specimen_type,
            method, standard, version, on_date,
        )
