"""
Unit tests for breakpoint categorization and the interpretation engine.
"""

from datetime import date

import pytest
from hypothesis import given, strategies as st

from amr_ingest.core.interpretation import InterpretationEngine, categorize
from amr_ingest.core.models import (
    AntibioticResultUnit,
    BreakpointRule,
    NormalizedIsolateUnit,
    Organism,
    RawValue,
)
from amr_ingest.reference import InMemoryReferenceData

DILUTIONS = [0.06, 0.125, 0.25, 0.5, 1, 2, 4, 8, 16, 32, 64, 128]


def _rule(method="mic", susceptible=2, resistant=8, **kwargs) -> BreakpointRule:
    return BreakpointRule(
        organism="Enterobacterales", antibiotic="GEN", method=method, standard="CLSI",
        version="2024", susceptible=susceptible, resistant=resistant, **kwargs,
    )


def _raw(text: str) -> RawValue:
    for operator in ("<=", ">=", "<", ">"):
        if text.startswith(operator):
            return RawValue(number=float(text[len(operator):]), operator=operator)
    return RawValue(number=float(text))


def _result(antibiotic="GEN", value="4", method="mic", standard="CLSI", version="2024", **kwargs):
    return AntibioticResultUnit(
        antibiotic=antibiotic,
        method=method,
        raw_value=_raw(value) if value is not None else None,
        breakpoint_standard=standard,
        breakpoint_version=version,
        provenance=kwargs.pop("provenance", "raw"),
        source_column=f"{antibiotic}_{method.upper()}",
        **kwargs,
    )


def _isolate(*results, organism="E. coli", specimen_type="urine", collection_date=date(2024, 3, 1)):
    return NormalizedIsolateUnit(
        row_number=0,
        organism=organism,
        specimen_type=specimen_type,
        collection_date=collection_date,
        results=list(results),
    )


class TestCategorize:
    """Tests for categorize()"""

    @pytest.mark.parametrize("value,category", [
        ("1", "S"), ("2", "S"), ("4", "I"), ("8", "R"), ("16", "R"),
        ("<=2", "S"), ("<2", "S"), (">2", "I"), ("<8", "I"), (">=8", "R"), (">8", "R"),
    ])
    def test_mic_inclusive(self, value, category):
        assert categorize(_raw(value), _rule()) == category

    @pytest.mark.parametrize("value,category", [
        ("1", "S"), ("2", "I"), ("4", "I"), ("8", "I"), ("16", "R"), ("<=2", "I"), ("<2", "S"),
    ])
    def test_mic_exclusive(self, value, category):
        assert categorize(_raw(value), _rule(boundary="exclusive")) == category

    @pytest.mark.parametrize("value,category", [
        ("25", "S"), ("17", "S"), ("15", "I"), ("13", "R"), ("6", "R"),
        (">=17", "S"), ("<17", "I"), ("<=13", "R"), (">13", "I"),
    ])
    def test_zone_diameter(self, value, category):
        assert categorize(_raw(value), _rule("disk", 17, 13)) == category

    def test_no_intermediate_when_thresholds_adjacent(self):
        rule = _rule(susceptible=2, resistant=4)
        assert [categorize(_raw(v), rule) for v in ("2", "4")] == ["S", "R"]

    @given(
        st.integers(min_value=0, max_value=len(DILUTIONS) - 2),
        st.integers(min_value=1, max_value=3),
    )
    def test_operator_decides_category_on_the_boundary(self, low, gap):
        """Property: flipping the operator at a threshold flips the category"""
        susceptible = DILUTIONS[low]
        resistant = DILUTIONS[min(low + gap, len(DILUTIONS) - 1)]
        rule = _rule(susceptible=susceptible, resistant=resistant)

        at_s = RawValue(number=susceptible, operator="<=")
        above_s = RawValue(number=susceptible, operator=">")
        at_r = RawValue(number=resistant, operator=">=")
        below_r = RawValue(number=resistant, operator="<")

        assert categorize(at_s, rule) == "S"
        assert categorize(above_s, rule) != "S"
        assert categorize(at_r, rule) == "R"
        assert categorize(below_r, rule) != "R"

    @given(st.sampled_from(DILUTIONS), st.sampled_from(["<", "<=", "=", ">=", ">"]))
    def test_deterministic(self, number, operator):
        raw = RawValue(number=number, operator=operator)
        assert categorize(raw, _rule()) == categorize(raw, _rule())


class TestInterpretationEngine:
    """Tests for InterpretationEngine against the project reference tables"""

    @pytest.fixture
    def engine(self, reference) -> InterpretationEngine:
        return InterpretationEngine(reference)

    def test_raw_mic_is_interpreted(self, engine):
        isolate = engine.interpret(_isolate(_result("GEN", "4")))

        result = isolate.results[0]
        assert (result.category, result.status) == ("I", "interpreted")
        assert result.committable
        assert isolate.issues == []

    def test_input_is_not_mutated(self, engine):
        original = _isolate(_result("GEN", "4"))

        first = engine.interpret(original)
        second = engine.interpret(original)

        assert original.results[0].status == "pending"
        assert first == second

    def test_organism_specific_rule_beats_group_rule(self, engine):
        salmonella = engine.interpret(_isolate(_result("CIP", "0.12"), organism="Salmonella"))
        coli = engine.interpret(_isolate(_result("CIP", "0.12")))

        assert salmonella.results[0].category == "I"
        assert coli.results[0].category == "S"

    def test_specimen_specific_rule(self, engine):
        urine = engine.interpret(_isolate(_result("NIT", "64")))
        blood = engine.interpret(_isolate(_result("NIT", "64"), specimen_type="blood"))

        assert urine.results[0].category == "I"
        assert blood.results[0].status == "uninterpretable"
        assert [i.kind for i in blood.issues] == ["uninterpretable"]

    def test_disk_rule(self, engine):
        isolate = engine.interpret(_isolate(_result("AMP", "12", method="disk")))
        assert isolate.results[0].category == "R"

    def test_etest_uses_mic_rule(self, engine):
        isolate = engine.interpret(_isolate(_result("GEN", "1", method="etest")))
        assert isolate.results[0].category == "S"

    def test_rules_follow_collection_date(self, engine):
        in_effect = engine.interpret(
            _isolate(_result("GEN", "4", version="2019"), collection_date=date(2023, 6, 1))
        )
        superseded = engine.interpret(
            _isolate(_result("GEN", "4", version="2019"), collection_date=date(2024, 6, 1))
        )

        assert in_effect.results[0].category == "S"
        assert superseded.results[0].status == "uninterpretable"

    def test_standard_selects_rule_set(self, engine):
        isolate = engine.interpret(_isolate(_result("GEN", "4", standard="EUCAST")))
        assert isolate.results[0].category == "R"

    def test_missing_standard_is_uninterpretable(self, engine):
        isolate = engine.interpret(_isolate(_result("GEN", "4", standard=None, version=None)))

        assert isolate.results[0].status == "uninterpretable"
        assert isolate.results[0].category is None
        assert not isolate.fatal

    def test_missing_organism_is_uninterpretable(self, engine):
        isolate = engine.interpret(_isolate(_result("GEN", "4"), organism=None))

        assert isolate.results[0].status == "uninterpretable"
        assert isolate.issues[0].field == "organism"

    def test_unknown_antibiotic_is_uninterpretable(self, engine):
        isolate = engine.interpret(_isolate(_result("FOX", "4")))
        assert isolate.results[0].status == "uninterpretable"
        assert isolate.issues[0].antibiotic == "FOX"

    def test_pre_interpreted_is_accepted(self, engine):
        unit = _result("AMP", None, method="pre-interpreted", category="R", provenance="pre-interpreted")

        isolate = engine.interpret(_isolate(unit))

        assert (isolate.results[0].category, isolate.results[0].status) == ("R", "interpreted")
        assert isolate.issues == []

    def test_disagreement_is_one_warning_and_keeps_reported_category(self, engine):
        unit = _result("GEN", "16", category="S", provenance="pre-interpreted")

        isolate = engine.interpret(_isolate(unit))

        assert isolate.results[0].category == "S"
        assert isolate.results[0].committable
        assert [(i.kind, i.severity, i.antibiotic) for i in isolate.issues] == [
            ("interpretation_disagreement", "warning", "GEN"),
        ]

    @pytest.mark.parametrize("reported,value", [("NS", "4"), ("NS", "16"), ("U", "1"), ("I", "4")])
    def test_compatible_reported_categories(self, engine, reported, value):
        unit = _result("GEN", value, category=reported, provenance="pre-interpreted")
        isolate = engine.interpret(_isolate(unit))
        assert isolate.issues == []

    def test_cross_check_skipped_without_rule(self, engine):
        unit = _result("FOX", "16", category="S", provenance="pre-interpreted")
        isolate = engine.interpret(_isolate(unit))
        assert isolate.results[0].status == "interpreted"
        assert isolate.issues == []

    def test_non_pending_units_pass_through(self, engine):
        unit = AntibioticResultUnit(
            antibiotic="GEN", method="mic", provenance="raw", status="unclassifiable"
        )
        isolate = engine.interpret(_isolate(unit))
        assert isolate.results[0].status == "unclassifiable"

    def test_tied_rules_are_uninterpretable(self):
        reference = InMemoryReferenceData(
            organisms=[Organism(code="eco", name="Escherichia coli", group="Enterobacterales")],
            breakpoints=[
                _rule(susceptible=2, resistant=8),
                _rule(susceptible=4, resistant=16),
            ],
        )

        isolate = InterpretationEngine(reference).interpret(_isolate(_result("GEN", "4"), organism="eco"))

        assert isolate.results[0].status == "uninterpretable"
        assert "equally specific" in isolate.issues[0].message
