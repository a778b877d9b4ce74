"""
Integration tests for the PostgreSQL warehouse: connection pool, schema,
persistence store and import ledger.

Tests run against a PostgreSQL testcontainer.
"""

from datetime import date

import pytest

from amr_ingest.core.errors import BatchNotFound, InvalidTransition
from amr_ingest.core.models import (
    AntibioticResultUnit,
    BatchCounts,
    BatchFilter,
    ImportBatch,
    NormalizedIsolateUnit,
    RawValue,
)
from amr_ingest.warehouse.connection import DatabaseConnectionPool
from amr_ingest.warehouse.ledger import PostgresImportLedger
from amr_ingest.warehouse.schema_mgmt import SchemaManager
from amr_ingest.warehouse.store import PostgresPersistenceStore


def _pool_for(container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=container.get_container_host_ip(),
        port=int(container.get_exposed_port(5432)),
        database="test_amr",
        user="test_pipeline",
        password="test_password",
        **kwargs,
    )


def _units() -> list[NormalizedIsolateUnit]:
    return [
        NormalizedIsolateUnit(
            row_number=0,
            specimen_id="S-1",
            organism="eco",
            specimen_type="urine",
            collection_date=date(2024, 1, 5),
            custom_fields={"ward_type": "icu"},
            results=[
                AntibioticResultUnit(
                    antibiotic="AMP", method="pre-interpreted", category="R",
                    breakpoint_standard="CLSI", breakpoint_version="2024",
                    provenance="pre-interpreted", status="interpreted",
                ),
                AntibioticResultUnit(
                    antibiotic="GEN", method="mic", raw_value=RawValue(number=1, operator="<="),
                    category="S", breakpoint_standard="CLSI", breakpoint_version="2024",
                    provenance="raw", status="interpreted",
                ),
            ],
        ),
    ]


def _count(pool: DatabaseConnectionPool, table: str) -> int:
    return pool.execute_query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


@pytest.mark.integration
class TestConnectionPool:
    """Tests for DatabaseConnectionPool against a live server"""

    def test_pool_sizes(self, postgres_container):
        pool = _pool_for(postgres_container, min_size=2, max_size=5)
        pool.open()

        assert pool.pool.min_size == 2
        assert pool.pool.max_size == 5

        pool.close()

    def test_get_connection(self, postgres_container):
        pool = _pool_for(postgres_container)
        pool.open()

        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS test")
                assert cur.fetchone()["test"] == 1

        pool.close()

    def test_execute_query(self, postgres_container):
        pool = _pool_for(postgres_container)
        pool.open()

        assert pool.execute_query("SELECT 42 AS answer") == [{"answer": 42}]

        pool.close()

    def test_settings_from_environment(self, test_env_vars, postgres_container, monkeypatch):
        """Database, user and password come from config/test.env"""
        monkeypatch.setenv("DB_HOST", postgres_container.get_container_host_ip())
        monkeypatch.setenv("DB_PORT", str(postgres_container.get_exposed_port(5432)))

        with DatabaseConnectionPool() as pool:
            row = pool.execute_query("SELECT current_database() AS db, current_user AS usr")[0]

        assert (row["db"], row["usr"]) == ("test_amr", "test_pipeline")

    def test_context_manager(self, postgres_container):
        with _pool_for(postgres_container) as pool:
            assert pool.execute_query("SELECT 1 AS one")[0]["one"] == 1

        with pytest.raises(RuntimeError):
            pool.execute_query("SELECT 1")


@pytest.mark.integration
class TestSchemaManager:
    def test_tables_created(self, clean_db):
        manager = SchemaManager(clean_db)

        for table in ("import_batch", "ledger_event", "isolate", "ast_result"):
            assert manager.table_exists(table)

    def test_ensure_schema_is_repeatable(self, clean_db):
        SchemaManager(clean_db).ensure_schema()
        assert SchemaManager(clean_db).table_exists("ast_result")


@pytest.mark.integration
class TestPostgresPersistenceStore:
    """Tests for PostgresPersistenceStore"""

    def test_commit_writes_isolates_and_results(self, clean_db):
        store = PostgresPersistenceStore(clean_db)

        tx = store.begin_batch_transaction("batch_1")
        row_ids = store.write_units(tx, _units())
        store.commit(tx)

        assert len(row_ids) == 3
        isolate = clean_db.execute_query("SELECT * FROM isolate WHERE batch_id = %s", ("batch_1",))
        assert isolate[0]["organism"] == "eco"
        assert isolate[0]["collection_date"] == date(2024, 1, 5)
        assert isolate[0]["custom_fields"] == {"ward_type": "icu"}
        results = clean_db.execute_query(
            "SELECT antibiotic, category, raw_number, raw_operator FROM ast_result "
            "WHERE batch_id = %s ORDER BY antibiotic",
            ("batch_1",),
        )
        assert [(r["antibiotic"], r["category"]) for r in results] == [("AMP", "R"), ("GEN", "S")]
        assert (results[1]["raw_number"], results[1]["raw_operator"]) == (1.0, "<=")

    def test_abort_writes_nothing(self, clean_db):
        store = PostgresPersistenceStore(clean_db)

        tx = store.begin_batch_transaction("batch_1")
        store.write_units(tx, _units())
        store.abort(tx)

        assert _count(clean_db, "isolate") == 0
        assert _count(clean_db, "ast_result") == 0

    def test_delete_by_row_ids(self, clean_db):
        store = PostgresPersistenceStore(clean_db)
        tx = store.begin_batch_transaction("batch_1")
        first = store.write_units(tx, _units())
        store.commit(tx)
        tx = store.begin_batch_transaction("batch_2")
        store.write_units(tx, _units())
        store.commit(tx)

        deleted = store.delete_by_row_ids(first)

        assert deleted == 3
        assert _count(clean_db, "isolate") == 1
        assert _count(clean_db, "ast_result") == 2


@pytest.mark.integration
class TestPostgresImportLedger:
    """Tests for PostgresImportLedger"""

    def _open(self, ledger, batch_id="batch_1", actor="lab-user-17"):
        return ledger.open_batch(
            ImportBatch(batch_id=batch_id, source_checksum="abc123", actor=actor)
        )

    def test_lifecycle_and_events(self, clean_db):
        ledger = PostgresImportLedger(clean_db)
        self._open(ledger)

        ledger.transition("batch_1", "parsing", actor="lab-user-17", file_format="delimited")
        ledger.transition(
            "batch_1", "validating", actor="lab-user-17",
            counts=BatchCounts(parsed=1, interpreted=2, committed=2),
        )
        batch = ledger.transition(
            "batch_1", "committed", actor="lab-user-17", row_ids=["iso-1", "res-1", "res-2"],
        )

        stored = ledger.get_batch("batch_1")
        assert stored.status == "committed"
        assert stored.file_format == "delimited"
        assert stored.counts.committed == 2
        assert stored.row_ids == ["iso-1", "res-1", "res-2"]
        assert stored.committed_at == batch.committed_at
        assert [e.to_status for e in ledger.events("batch_1")] == [
            "pending", "parsing", "validating", "committed",
        ]

    def test_forbidden_transition_leaves_row_unchanged(self, clean_db):
        ledger = PostgresImportLedger(clean_db)
        self._open(ledger)

        with pytest.raises(InvalidTransition):
            ledger.transition("batch_1", "committed", actor="lab-user-17")

        assert ledger.get_batch("batch_1").status == "pending"
        assert len(ledger.events("batch_1")) == 1

    def test_duplicate_batch_id(self, clean_db):
        ledger = PostgresImportLedger(clean_db)
        self._open(ledger)

        with pytest.raises(ValueError):
            self._open(ledger)

    def test_unknown_batch(self, clean_db):
        ledger = PostgresImportLedger(clean_db)

        with pytest.raises(BatchNotFound):
            ledger.get_batch("batch_missing")
        with pytest.raises(BatchNotFound):
            ledger.transition("batch_missing", "parsing")

    def test_list_batches(self, clean_db):
        ledger = PostgresImportLedger(clean_db)
        self._open(ledger, "batch_1", actor="alice")
        self._open(ledger, "batch_2", actor="bob")
        ledger.transition("batch_2", "failed", actor="bob", error="boom")

        assert [b.batch_id for b in ledger.list_batches()] == ["batch_2", "batch_1"]
        assert [b.batch_id for b in ledger.list_batches(BatchFilter(status="failed"))] == [
            "batch_2"
        ]
        assert [b.batch_id for b in ledger.list_batches(BatchFilter(actor="alice"))] == [
            "batch_1"
        ]
        assert ledger.list_batches(BatchFilter(limit=1))[0].batch_id == "batch_2"
