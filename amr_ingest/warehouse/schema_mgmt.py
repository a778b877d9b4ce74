"""
Schema management for the surveillance warehouse.

Creates the ledger tables (import_batch, ledger_event) and the data tables
written by batch commits (isolate and the result table).
"""

from amr_ingest.observability.logger import get_logger
from amr_ingest.utils.validation import sanitize_sql_identifier

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

LEDGER_DDL = """
    CREATE TABLE IF NOT EXISTS import_batch (
        batch_id            TEXT PRIMARY KEY,
        status              TEXT NOT NULL,
        source_checksum     TEXT NOT NULL,
        source_name         TEXT,
        file_format         TEXT,
        actor               TEXT NOT NULL,
        target_table        TEXT NOT NULL,
        template_snapshot   JSONB,
        counts              JSONB NOT NULL DEFAULT '{}'::jsonb,
        row_ids             JSONB NOT NULL DEFAULT '[]'::jsonb,
        error               TEXT,
        checkpoint_offset   INTEGER,
        issues              JSONB NOT NULL DEFAULT '[]'::jsonb,
        quality             JSONB,
        created_at          TIMESTAMPTZ NOT NULL,
        committed_at        TIMESTAMPTZ,
        rolled_back_at      TIMESTAMPTZ
    );

    CREATE INDEX IF NOT EXISTS idx_import_batch_status ON import_batch (status);
    CREATE INDEX IF NOT EXISTS idx_import_batch_checksum ON import_batch (source_checksum);

    CREATE TABLE IF NOT EXISTS ledger_event (
        event_id        BIGSERIAL PRIMARY KEY,
        batch_id        TEXT NOT NULL REFERENCES import_batch (batch_id),
        from_status     TEXT,
        to_status       TEXT NOT NULL,
        actor           TEXT,
        detail          JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_ledger_event_batch ON ledger_event (batch_id, event_id);
"""

ISOLATE_DDL = """
    CREATE TABLE IF NOT EXISTS isolate (
        row_id          TEXT PRIMARY KEY,
        batch_id        TEXT NOT NULL,
        row_number      INTEGER NOT NULL,
        specimen_id     TEXT,
        patient_id      TEXT,
        organism        TEXT,
        specimen_type   TEXT,
        specimen_source TEXT,
        collection_date DATE,
        facility        TEXT,
        host_species    TEXT,
        extra           JSONB NOT NULL DEFAULT '{}'::jsonb,
        custom_fields   JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_isolate_batch ON isolate (batch_id);
"""

RESULT_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        row_id              TEXT PRIMARY KEY,
        batch_id            TEXT NOT NULL,
        isolate_row_id      TEXT NOT NULL,
        antibiotic          TEXT NOT NULL,
        method              TEXT NOT NULL,
        raw_number          DOUBLE PRECISION,
        raw_operator        TEXT,
        raw_unit            TEXT,
        category            TEXT NOT NULL,
        breakpoint_standard TEXT,
        breakpoint_version  TEXT,
        provenance          TEXT NOT NULL,
        source_column       TEXT,
        source_value        TEXT,
        created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_{table}_batch ON {table} (batch_id);
    CREATE INDEX IF NOT EXISTS idx_{table}_isolate ON {table} (isolate_row_id);
"""


class SchemaManager:
    """
    Creates and inspects the warehouse tables.
    """

    def __init__(self, pool: DatabaseConnectionPool, target_table: str = "ast_result"):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
            target_table: Name of the result table
        """
        self.pool = pool
        self.target_table = sanitize_sql_identifier(target_table, "target_table")

    def ensure_schema(self) -> None:
        """Create every table and index that does not exist yet."""
        statements = [LEDGER_DDL, ISOLATE_DDL, RESULT_DDL.format(table=self.target_table)]
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                for ddl in statements:
                    cur.execute(ddl)
        logger.info(f"Schema ready (result table: {self.target_table})")

    def table_exists(self, table: str) -> bool:
        rows = self.pool.execute_query(
            "SELECT to_regclass(%s) IS NOT NULL AS present", (table,)
        )
        return bool(rows and rows[0]["present"])

    def drop_schema(self) -> None:
        """Drop every engine table (used by tests)."""
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"DROP TABLE IF EXISTS {self.target_table}, isolate, ledger_event, import_batch"
                )
        logger.warning("Dropped engine tables")
