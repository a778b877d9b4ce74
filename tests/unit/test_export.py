"""
Unit tests for the long-format CSV exporter.
"""

import csv
import io
from datetime import date

from amr_ingest.batch import LongFormatExporter
from amr_ingest.core.models import (
    AntibioticResultUnit,
    NormalizedIsolateUnit,
    QualityIssue,
    RawValue,
)


def _units() -> list[NormalizedIsolateUnit]:
    return [
        NormalizedIsolateUnit(
            row_number=0,
            specimen_id="S-1",
            organism="eco",
            specimen_type="urine",
            collection_date=date(2024, 1, 5),
            extra={"ward": "7B"},
            custom_fields={"ward_type": "in"},
            results=[
                AntibioticResultUnit(
                    antibiotic="AMP", method="pre-interpreted", category="R",
                    breakpoint_standard="CLSI", breakpoint_version="2024",
                    provenance="pre-interpreted", status="interpreted",
                ),
                AntibioticResultUnit(
                    antibiotic="GEN", method="mic", raw_value=RawValue(number=4),
                    category="I", breakpoint_standard="CLSI", breakpoint_version="2024",
                    provenance="raw", status="interpreted",
                ),
                AntibioticResultUnit(
                    antibiotic="CIP", method="mic", provenance="raw", status="unclassifiable",
                    source_value="pending",
                ),
            ],
        ),
        NormalizedIsolateUnit(row_number=1, specimen_id="S-2", organism="kpn"),
        NormalizedIsolateUnit(
            row_number=2,
            organism="eco",
            issues=[QualityIssue(kind="mapping_error", severity="fatal")],
        ),
    ]


def _read(text: str) -> list[dict[str, str]]:
    return list(csv.DictReader(io.StringIO(text)))


class TestLongFormatExporter:
    """Tests for LongFormatExporter"""

    def test_header(self):
        header = LongFormatExporter().header(_units())

        assert header[0] == "source_row"
        assert header[1:9] == [
            "specimen_id", "patient_id", "organism", "specimen_type", "specimen_source",
            "collection_date", "facility", "host_species",
        ]
        assert header[9:11] == ["ward", "ward_type"]
        assert header[-1] == "status"

    def test_one_line_per_result(self):
        buffer = io.StringIO()

        count = LongFormatExporter().write(_units(), buffer)

        rows = _read(buffer.getvalue())
        assert count == 4
        assert [(r["source_row"], r["antibiotic"]) for r in rows] == [
            ("0", "AMP"), ("0", "GEN"), ("0", "CIP"), ("1", ""),
        ]
        assert rows[0]["collection_date"] == "2024-01-05"
        assert rows[0]["ward_type"] == "in"

    def test_only_lab_reported_categories_fill_interpretation(self):
        buffer = io.StringIO()
        LongFormatExporter().write(_units(), buffer)

        amp, gen, cip, _ = _read(buffer.getvalue())

        assert (amp["interpretation"], amp["category"], amp["result_value"]) == ("R", "R", "")
        assert (gen["interpretation"], gen["category"], gen["result_value"]) == ("", "I", "4")
        assert (cip["result_value"], cip["status"]) == ("pending", "unclassifiable")

    def test_result_value_keeps_unit_and_precision(self):
        unit = NormalizedIsolateUnit(
            row_number=0, organism="eco",
            results=[
                AntibioticResultUnit(
                    antibiotic="AMP", method="mic", provenance="raw", status="uninterpretable",
                    raw_value=RawValue(number=32, operator=">=", unit="mg/L"),
                ),
                AntibioticResultUnit(
                    antibiotic="CIP", method="mic", provenance="raw", status="uninterpretable",
                    raw_value=RawValue(number=0.0078125),
                ),
            ],
        )

        rows = list(LongFormatExporter().rows([unit]))

        assert [row["result_value"] for row in rows] == [">=32 mg/L", "0.0078125"]

    def test_fatal_rows(self):
        assert len(list(LongFormatExporter().rows(_units()))) == 4
        assert len(list(LongFormatExporter(include_fatal=True).rows(_units()))) == 5

    def test_export_to_file(self, tmp_path):
        path = tmp_path / "long.csv"

        count = LongFormatExporter().export(_units(), path)

        assert count == 4
        assert path.read_text(encoding="utf-8").startswith("source_row,specimen_id")
