"""
End-to-end import scenarios.

Tests the complete flow: file bytes → mapping → classification →
interpretation → quality → commit, and what the ledger and store hold
afterwards.
"""

import csv
import io

import pytest

from amr_ingest.batch import LongFormatExporter
from amr_ingest.core.errors import AlreadyRolledBack
from amr_ingest.core.mapping.template_config import TemplateBuilder

WIDE_EXPORT = """Organism,Specimen,Date,AMP_SIR,GEN_MIC
E.coli,urine,2024-01-05,R,4
K. pneumoniae,blood,2024-01-06,S,<=1
E.coli,urine,2024-01-07,R,16
"""


@pytest.mark.e2e
class TestWideImport:
    """A three-row wide export imported with CLSI 2024 defaults"""

    def test_first_isolate_results(self, pipeline, make_csv, auth, store):
        report = pipeline.run(make_csv(WIDE_EXPORT), auth, batch_id="batch_wide")

        assert report.status == "committed"
        first = report.units[0]
        assert first.organism == "eco"
        assert [(r.antibiotic, r.category, r.provenance) for r in first.results] == [
            ("AMP", "R", "pre-interpreted"),
            ("GEN", "I", "raw"),
        ]
        assert all(r.breakpoint_standard == "CLSI" for r in first.results)

        isolates = store.rows("isolate", "batch_wide")
        first_row = next(row for row in isolates if row["row_number"] == 0)
        results = [
            row for row in store.rows("ast_result", "batch_wide")
            if row["isolate_row_id"] == first_row["row_id"]
        ]
        assert sorted((r["antibiotic"], r["category"]) for r in results) == [
            ("AMP", "R"), ("GEN", "I"),
        ]

    def test_batch_totals(self, pipeline, make_csv, auth, ledger):
        pipeline.run(make_csv(WIDE_EXPORT), auth, batch_id="batch_wide")

        batch = ledger.get_batch("batch_wide")
        assert batch.status == "committed"
        assert batch.counts.parsed == 3
        assert batch.counts.committed == 6
        assert batch.committed_at is not None
        assert batch.quality is not None


@pytest.mark.e2e
class TestUnmappedRequiredField:
    """A template that leaves Specimen unmapped"""

    def test_every_row_fatal(self, pipeline, make_csv, auth, store, ledger):
        template = (
            TemplateBuilder("regional-lab", "no-specimen")
            .map_column("Organism", "organism")
            .map_column("Date", "collection_date")
            .with_layout("wide")
            .build()
        )

        report = pipeline.run(make_csv(WIDE_EXPORT), auth, template=template, batch_id="batch_bad")

        assert report.status == "failed"
        assert all(unit.fatal for unit in report.units)
        assert report.batch.counts.committed == 0
        assert store.row_ids() == set()
        assert ledger.get_batch("batch_bad").row_ids == []
        errors = report.issues_of_kind("mapping_error")
        assert sorted(row for row, _ in errors) == [0, 1, 2]
        assert {issue.field for _, issue in errors} == {"specimen_type"}


@pytest.mark.e2e
class TestReportedCategoryDisagreement:
    def test_one_warning_and_batch_still_commits(self, pipeline, make_csv, auth, store):
        text = "Organism,Specimen,Date,GEN_SIR\nE.coli,urine,2024-01-05,S (16)\n"

        report = pipeline.run(make_csv(text), auth, batch_id="batch_disagree")

        assert report.status == "committed"
        disagreements = report.issues_of_kind("interpretation_disagreement")
        assert len(disagreements) == 1
        assert disagreements[0][1].severity == "warning"
        [row] = store.rows("ast_result", "batch_disagree")
        assert (row["antibiotic"], row["category"], row["provenance"]) == (
            "GEN", "S", "pre-interpreted",
        )


@pytest.mark.e2e
class TestRollbackTwice:
    def test_second_rollback_rejected(self, pipeline, make_csv, auth, store):
        pipeline.run(make_csv(WIDE_EXPORT), auth, batch_id="batch_wide")

        assert pipeline.rollback("batch_wide").status == "rolled-back"
        assert store.row_ids() == set()
        with pytest.raises(AlreadyRolledBack):
            pipeline.rollback("batch_wide")


@pytest.mark.e2e
class TestExportReimport:
    """Long-format export imported again in auto-map mode"""

    def test_round_trip_keeps_categories(self, pipeline, make_csv, auth, store):
        first = pipeline.run(make_csv(WIDE_EXPORT), auth, batch_id="batch_wide")
        buffer = io.StringIO()
        lines = LongFormatExporter().write(first.units, buffer)

        second = pipeline.run(
            make_csv(buffer.getvalue(), name="long_export.csv"), auth, batch_id="batch_long"
        )

        assert lines == 6
        assert second.status == "committed"
        assert second.batch.counts.parsed == 6
        assert second.batch.counts.committed == 6

        def categories(batch_id):
            return sorted(
                (r["antibiotic"], r["category"], r["provenance"])
                for r in store.rows("ast_result", batch_id)
            )

        assert categories("batch_long") == categories("batch_wide")

    def test_round_trip_keeps_measurements_with_units(self, pipeline, make_csv, auth):
        text = (
            "Organism,Specimen,Date,GEN_MIC,CIP_MIC\n"
            "E.coli,urine,2024-01-05,>=32 mg/L,0.0078125\n"
            "K. pneumoniae,blood,2024-01-06,<=0.5 mg/L,1.25\n"
        )
        first = pipeline.run(make_csv(text), auth, batch_id="batch_units")
        buffer = io.StringIO()
        LongFormatExporter().write(first.units, buffer)

        exported = [row["result_value"] for row in csv.DictReader(io.StringIO(buffer.getvalue()))]
        second = pipeline.run(
            make_csv(buffer.getvalue(), name="long_export.csv"), auth, batch_id="batch_units_long"
        )

        assert exported == [">=32 mg/L", "0.0078125", "<=0.5 mg/L", "1.25"]

        def measurements(report):
            return [
                (r.antibiotic, r.raw_value, r.category)
                for unit in report.units
                for r in unit.results
            ]

        assert measurements(second) == measurements(first)
