"""
Persistence stores for committed isolates and antibiotic results.

A store writes one batch inside one transaction and can later delete
exactly the rows a batch wrote. Every written row carries a generated row
id and the batch id.
"""

import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from psycopg.types.json import Jsonb

from amr_ingest.core.models import NormalizedIsolateUnit
from amr_ingest.observability.logger import get_logger
from amr_ingest.utils.validation import sanitize_sql_identifier

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

ISOLATE_TABLE = "isolate"


def new_row_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


@dataclass
class TxHandle:
    """An open batch transaction."""

    tx_id: str
    batch_id: str
    connection: Any = None
    staged: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    row_ids: list[str] = field(default_factory=list)
    closed: bool = False


@runtime_checkable
class PersistenceStore(Protocol):
    """Transactional target for batch commits."""

    def begin_batch_transaction(self, batch_id: str) -> TxHandle:
        ...

    def write_units(self, tx: TxHandle, units: Sequence[NormalizedIsolateUnit]) -> list[str]:
        """Write isolates and their committable results; return the new row ids."""
        ...

    def commit(self, tx: TxHandle) -> None:
        ...

    def abort(self, tx: TxHandle) -> None:
        ...

    def delete_by_row_ids(self, row_ids: Sequence[str]) -> int:
        """Delete exactly these rows in one operation; return how many were removed."""
        ...


def isolate_row(row_id: str, batch_id: str, unit: NormalizedIsolateUnit) -> dict[str, Any]:
    return {
        "row_id": row_id,
        "batch_id": batch_id,
        "row_number": unit.row_number,
        **unit.isolate_fields(),
        "extra": dict(unit.extra),
        "custom_fields": {
            k: (v.isoformat() if hasattr(v, "isoformat") else v)
            for k, v in unit.custom_fields.items()
        },
    }


def result_rows(
    batch_id: str, isolate_row_id: str, unit: NormalizedIsolateUnit
) -> list[dict[str, Any]]:
    rows = []
    for result in unit.committable_results:
        raw = result.raw_value
        rows.append({
            "row_id": new_row_id("res"),
            "batch_id": batch_id,
            "isolate_row_id": isolate_row_id,
            "antibiotic": result.antibiotic,
            "method": result.method,
            "raw_number": raw.number if raw else None,
            "raw_operator": raw.operator if raw else None,
            "raw_unit": raw.unit if raw else None,
            "category": result.category,
            "breakpoint_standard": result.breakpoint_standard,
            "breakpoint_version": result.breakpoint_version,
            "provenance": result.provenance,
            "source_column": result.source_column,
            "source_value": result.source_value,
        })
    return rows


class InMemoryPersistenceStore:
    """
    Dict-backed store for tests and dry runs.

    Writes are staged on the transaction handle and only become visible on
    commit; abort discards them.
    """

    def __init__(self, target_table: str = "ast_result"):
        self.target_table = target_table
        self.tables: dict[str, dict[str, dict[str, Any]]] = {
            ISOLATE_TABLE: {},
            target_table: {},
        }
        self._lock = threading.Lock()

    def begin_batch_transaction(self, batch_id: str) -> TxHandle:
        return TxHandle(
            tx_id=new_row_id("tx"),
            batch_id=batch_id,
            staged={ISOLATE_TABLE: {}, self.target_table: {}},
        )

    def write_units(self, tx: TxHandle, units: Sequence[NormalizedIsolateUnit]) -> list[str]:
        if tx.closed:
            raise RuntimeError(f"Transaction {tx.tx_id} is closed")
        written = []
        for unit in units:
            isolate_id = new_row_id("iso")
            tx.staged[ISOLATE_TABLE][isolate_id] = isolate_row(isolate_id, tx.batch_id, unit)
            written.append(isolate_id)
            for row in result_rows(tx.batch_id, isolate_id, unit):
                tx.staged[self.target_table][row["row_id"]] = row
                written.append(row["row_id"])
        tx.row_ids.extend(written)
        return written

    def commit(self, tx: TxHandle) -> None:
        if tx.closed:
            raise RuntimeError(f"Transaction {tx.tx_id} is closed")
        with self._lock:
            for table, rows in tx.staged.items():
                self.tables[table].update(rows)
        tx.closed = True

    def abort(self, tx: TxHandle) -> None:
        tx.staged = {}
        tx.closed = True

    def delete_by_row_ids(self, row_ids: Sequence[str]) -> int:
        wanted = set(row_ids)
        deleted = 0
        with self._lock:
            for rows in self.tables.values():
                for row_id in wanted.intersection(rows):
                    del rows[row_id]
                    deleted += 1
        return deleted

    def rows(self, table: str, batch_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = list(self.tables.get(table, {}).values())
        if batch_id is not None:
            rows = [row for row in rows if row["batch_id"] == batch_id]
        return rows

    def row_ids(self) -> set[str]:
        with self._lock:
            return {row_id for rows in self.tables.values() for row_id in rows}


class PostgresPersistenceStore:
    """
    PostgreSQL store: one pooled connection held per batch transaction.
    """

    def __init__(self, pool: DatabaseConnectionPool, target_table: str = "ast_result"):
        self.pool = pool
        self.target_table = sanitize_sql_identifier(target_table, "target_table")

    def begin_batch_transaction(self, batch_id: str) -> TxHandle:
        conn = self.pool.acquire()
        conn.autocommit = False
        return TxHandle(tx_id=new_row_id("tx"), batch_id=batch_id, connection=conn)

    def write_units(self, tx: TxHandle, units: Sequence[NormalizedIsolateUnit]) -> list[str]:
        isolate_sql = f"""
            INSERT INTO {ISOLATE_TABLE} (
                row_id, batch_id, row_number, specimen_id, patient_id, organism,
                specimen_type, specimen_source, collection_date, facility,
                host_species, extra, custom_fields
            ) VALUES (
                %(row_id)s, %(batch_id)s, %(row_number)s, %(specimen_id)s, %(patient_id)s,
                %(organism)s, %(specimen_type)s, %(specimen_source)s, %(collection_date)s,
                %(facility)s, %(host_species)s, %(extra)s, %(custom_fields)s
            )
        """
        result_sql = f"""
            INSERT INTO {self.target_table} (
                row_id, batch_id, isolate_row_id, antibiotic, method, raw_number,
                raw_operator, raw_unit, category, breakpoint_standard,
                breakpoint_version, provenance, source_column, source_value
            ) VALUES (
                %(row_id)s, %(batch_id)s, %(isolate_row_id)s, %(antibiotic)s, %(method)s,
                %(raw_number)s, %(raw_operator)s, %(raw_unit)s, %(category)s,
                %(breakpoint_standard)s, %(breakpoint_version)s, %(provenance)s,
                %(source_column)s, %(source_value)s
            )
        """

        isolates, results, written = [], [], []
        for unit in units:
            isolate_id = new_row_id("iso")
            row = isolate_row(isolate_id, tx.batch_id, unit)
            row["extra"] = Jsonb(row["extra"])
            row["custom_fields"] = Jsonb(row["custom_fields"])
            isolates.append(row)
            written.append(isolate_id)
            for result in result_rows(tx.batch_id, isolate_id, unit):
                results.append(result)
                written.append(result["row_id"])

        with tx.connection.cursor() as cur:
            if isolates:
                cur.executemany(isolate_sql, isolates)
            if results:
                cur.executemany(result_sql, results)
        tx.row_ids.extend(written)
        logger.debug(
            f"Batch {tx.batch_id}: staged {len(isolates)} isolates, {len(results)} results"
        )
        return written

    def commit(self, tx: TxHandle) -> None:
        try:
            tx.connection.commit()
        finally:
            self._release(tx)

    def abort(self, tx: TxHandle) -> None:
        if tx.closed:
            return
        try:
            tx.connection.rollback()
        finally:
            self._release(tx)

    def _release(self, tx: TxHandle) -> None:
        if not tx.closed:
            tx.closed = True
            self.pool.release(tx.connection)

    def delete_by_row_ids(self, row_ids: Sequence[str]) -> int:
        ids = list(row_ids)
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.target_table} WHERE row_id = ANY(%s)", (ids,)
                )
                deleted = cur.rowcount
                cur.execute(f"DELETE FROM {ISOLATE_TABLE} WHERE row_id = ANY(%s)", (ids,))
                deleted += cur.rowcount
        return deleted
