"""
Integration tests for the import pipeline writing to PostgreSQL.

Tests the full flow: CSV bytes → pipeline → isolate/ast_result tables and
the import_batch ledger, then rollback.
"""

import pytest

from amr_ingest.batch import CheckpointStore, ImportPipeline
from amr_ingest.core.errors import AlreadyRolledBack
from amr_ingest.warehouse.ledger import PostgresImportLedger
from amr_ingest.warehouse.store import PostgresPersistenceStore

LAB_EXPORT = """Specimen ID,Organism,Specimen,Date,AMP_SIR,GEN_MIC
S-1,E. coli,urine,2024-01-05,R,4
S-2,K. pneumoniae,blood,2024-01-06,S,<=1
"""


@pytest.fixture
def pg_pipeline(clean_db, settings, reference, notifier):
    return ImportPipeline.from_settings(
        settings,
        reference=reference,
        store=PostgresPersistenceStore(clean_db),
        ledger=PostgresImportLedger(clean_db),
        notifier=notifier,
        checkpoints=CheckpointStore(),
    )


def _count(pool, table: str, batch_id: str) -> int:
    rows = pool.execute_query(f"SELECT COUNT(*) AS n FROM {table} WHERE batch_id = %s", (batch_id,))
    return rows[0]["n"]


@pytest.mark.integration
class TestPostgresImport:
    """Tests for a committed import and its rollback"""

    def test_commit_persists_rows_and_ledger(self, pg_pipeline, clean_db, make_csv, auth):
        report = pg_pipeline.run(make_csv(LAB_EXPORT), auth, batch_id="batch_pg")

        assert report.status == "committed"
        assert _count(clean_db, "isolate", "batch_pg") == 2
        assert _count(clean_db, "ast_result", "batch_pg") == 4

        batch = pg_pipeline.ledger.get_batch("batch_pg")
        assert batch.status == "committed"
        assert len(batch.row_ids) == 6
        assert batch.quality is not None
        assert [e.to_status for e in pg_pipeline.ledger.events("batch_pg")] == [
            "pending", "parsing", "validating", "committed",
        ]

    def test_rollback_removes_exactly_the_batch(self, pg_pipeline, clean_db, make_csv, auth):
        pg_pipeline.run(make_csv(LAB_EXPORT), auth, batch_id="batch_keep")
        pg_pipeline.run(make_csv(LAB_EXPORT), auth, batch_id="batch_undo")

        batch = pg_pipeline.rollback("batch_undo", actor="auditor")

        assert batch.status == "rolled-back"
        assert _count(clean_db, "ast_result", "batch_undo") == 0
        assert _count(clean_db, "isolate", "batch_undo") == 0
        assert _count(clean_db, "ast_result", "batch_keep") == 4
        with pytest.raises(AlreadyRolledBack):
            pg_pipeline.rollback("batch_undo")

    def test_failed_batch_writes_nothing(self, pg_pipeline, clean_db, make_csv, auth):
        text = "Organism,Date,GEN_MIC\nE. coli,2024-01-05,4\n"

        report = pg_pipeline.run(make_csv(text), auth, batch_id="batch_fail")

        assert report.status == "failed"
        assert _count(clean_db, "isolate", "batch_fail") == 0
        assert pg_pipeline.ledger.get_batch("batch_fail").error == "No committable result units"
