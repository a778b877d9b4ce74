"""
Unit tests for Pydantic models.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from amr_ingest.core.models import (
    AntibioticResultUnit,
    AuthorizationContext,
    BatchFilter,
    BatchReport,
    BreakpointRule,
    CustomFieldSpec,
    ImportBatch,
    MappingTemplate,
    NormalizedIsolateUnit,
    QualityIssue,
    RawValue,
    RowReport,
    SourceFile,
)


class TestSourceFile:
    """Tests for SourceFile model"""

    def test_checksum_is_sha256_of_content(self):
        source = SourceFile(name="a.csv", content=b"abc")
        assert source.checksum == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_extension_is_lowercase(self):
        assert SourceFile(name="Export.XLSX", content=b"").extension == "xlsx"

    def test_from_path(self, tmp_path):
        path = tmp_path / "lab.csv"
        path.write_bytes(b"Organism\neco\n")

        source = SourceFile.from_path(path, delimiter=",")

        assert source.name == "lab.csv"
        assert source.size == len(b"Organism\neco\n")
        assert source.delimiter == ","

    def test_unknown_declared_format_rejected(self):
        with pytest.raises(ValidationError):
            SourceFile(name="a.bin", content=b"", declared_format="parquet")


class TestRawValue:
    """Tests for RawValue model"""

    def test_str_of_exact_value(self):
        assert str(RawValue(number=4)) == "4"

    def test_str_keeps_operator(self):
        assert str(RawValue(number=0.25, operator="<=")) == "<=0.25"

    def test_str_keeps_full_precision(self):
        assert str(RawValue(number=0.0078125)) == "0.0078125"
        assert str(RawValue(number=1234567.5, operator=">")) == ">1234567.5"

    def test_text_includes_unit(self):
        assert RawValue(number=32, operator=">=", unit="mg/L").text == ">=32 mg/L"
        assert RawValue(number=4).text == "4"

    def test_frozen(self):
        raw = RawValue(number=4)
        with pytest.raises(ValidationError):
            raw.number = 8


class TestNormalizedIsolateUnit:
    """Tests for NormalizedIsolateUnit and AntibioticResultUnit"""

    def test_committable_requires_interpreted_status_and_category(self):
        interpreted = AntibioticResultUnit(
            antibiotic="GEN", method="mic", category="S", provenance="raw", status="interpreted"
        )
        pending = AntibioticResultUnit(antibiotic="GEN", method="mic", provenance="raw")
        gap = AntibioticResultUnit(
            antibiotic="GEN", method="mic", provenance="raw", status="uninterpretable"
        )

        assert interpreted.committable
        assert not pending.committable
        assert not gap.committable

    def test_fatal_when_any_issue_is_fatal(self):
        unit = NormalizedIsolateUnit(
            row_number=0,
            issues=[
                QualityIssue(kind="incomplete", severity="info"),
                QualityIssue(kind="mapping_error", severity="fatal"),
            ],
        )
        assert unit.fatal

    def test_codes_are_stripped(self):
        unit = NormalizedIsolateUnit(row_number=0, organism=" eco ", specimen_type="urine ")
        assert unit.organism == "eco"
        assert unit.specimen_type == "urine"

    def test_isolate_fields(self):
        unit = NormalizedIsolateUnit(
            row_number=3, specimen_id="S1", organism="eco", collection_date=date(2024, 1, 5)
        )
        fields = unit.isolate_fields()
        assert fields["specimen_id"] == "S1"
        assert fields["collection_date"] == date(2024, 1, 5)
        assert "row_number" not in fields

    def test_negative_row_number_rejected(self):
        with pytest.raises(ValidationError):
            NormalizedIsolateUnit(row_number=-1)

    def test_invalid_category_rejected(self):
        with pytest.raises(ValidationError):
            AntibioticResultUnit(antibiotic="GEN", method="mic", category="X", provenance="raw")


class TestMappingTemplate:
    """Tests for MappingTemplate and CustomFieldSpec"""

    def test_unknown_target_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            MappingTemplate(owner="lab", name="t", columns={"Ward": "ward_type"})

        assert "unknown target" in str(exc_info.value)

    def test_custom_target_accepted_when_declared(self):
        template = MappingTemplate(
            owner="lab",
            name="t",
            columns={"Ward": "ward_type"},
            custom_fields=[CustomFieldSpec(name="ward_type")],
        )
        assert template.mapped_targets == {"ward_type"}
        assert template.custom_field("ward_type").type == "string"

    def test_enum_requires_allowed_values(self):
        with pytest.raises(ValidationError):
            CustomFieldSpec(name="ward_type", type="enum")

    def test_custom_field_cannot_shadow_standard_field(self):
        with pytest.raises(ValidationError):
            CustomFieldSpec(name="organism")

    def test_clone_with_leaves_original_untouched(self):
        template = MappingTemplate(
            owner="lab", name="t", columns={"Org": "organism"}, locked=True
        )

        clone = template.clone_with(breakpoint_standard="EUCAST", breakpoint_version="2024")

        assert clone.breakpoint_standard == "EUCAST"
        assert clone.locked is False
        assert template.breakpoint_standard is None
        assert template.locked is True


class TestBreakpointRule:
    """Tests for BreakpointRule"""

    def test_mic_thresholds_ordered(self):
        with pytest.raises(ValidationError):
            BreakpointRule(
                organism="eco", antibiotic="GEN", method="mic", standard="CLSI",
                version="2024", susceptible=8, resistant=2,
            )

    def test_zone_thresholds_ordered(self):
        with pytest.raises(ValidationError):
            BreakpointRule(
                organism="eco", antibiotic="GEN", method="disk", standard="CLSI",
                version="2024", susceptible=14, resistant=18,
            )

    def test_in_effect_window(self):
        rule = BreakpointRule(
            organism="eco", antibiotic="GEN", standard="CLSI", version="2019",
            susceptible=4, resistant=16, effective_to=date(2023, 12, 31),
        )
        assert rule.in_effect(date(2023, 6, 1))
        assert not rule.in_effect(date(2024, 1, 1))
        assert rule.in_effect(None)


class TestImportBatch:
    """Tests for ImportBatch and its ledger companions"""

    def test_defaults(self):
        batch = ImportBatch(batch_id="batch_1", source_checksum="abc", actor="lab-user-17")
        assert batch.status == "pending"
        assert batch.counts.parsed == 0
        assert batch.row_ids == []
        assert batch.template_name == "auto"

    def test_template_name(self):
        template = MappingTemplate(owner="lab", name="wide", columns={})
        batch = ImportBatch(
            batch_id="batch_1", source_checksum="abc", actor="u", template_snapshot=template
        )
        assert batch.template_name == "lab/wide"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            ImportBatch(batch_id="b", source_checksum="abc", actor="u", status="done")

    def test_filter_matches(self):
        batch = ImportBatch(batch_id="b", source_checksum="abc", actor="u", status="committed")
        assert BatchFilter(status="committed", actor="u").matches(batch)
        assert not BatchFilter(status="failed").matches(batch)
        assert not BatchFilter(source_checksum="other").matches(batch)

    def test_report_issues_of_kind(self):
        batch = ImportBatch(batch_id="b", source_checksum="abc", actor="u")
        report = BatchReport(
            batch=batch,
            rows=[
                RowReport(row_number=0, issues=[QualityIssue(kind="duplicate")]),
                RowReport(row_number=2, issues=[
                    QualityIssue(kind="incomplete"), QualityIssue(kind="duplicate"),
                ]),
            ],
        )

        assert [row for row, _ in report.issues_of_kind("duplicate")] == [0, 2]
        assert report.status == "pending"

    def test_report_units_not_serialized(self):
        batch = ImportBatch(batch_id="b", source_checksum="abc", actor="u")
        report = BatchReport(batch=batch, units=[NormalizedIsolateUnit(row_number=0)])
        assert "units" not in report.model_dump()


class TestAuthorizationContext:
    def test_default_tables(self):
        auth = AuthorizationContext(actor="lab-user-17")
        assert auth.can_write("isolate")
        assert auth.can_write("ast_result")
        assert not auth.can_write("import_batch")

    def test_empty_actor_rejected(self):
        with pytest.raises(ValidationError):
            AuthorizationContext(actor="")
