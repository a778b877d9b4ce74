"""
Import ledger: the durable record of every batch.

transition() is the only way a batch changes. It enforces the batch state
machine and appends a LedgerEvent for every accepted change, so the event
list of a batch is its complete audit trail.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from amr_ingest.core.errors import BatchNotFound, InvalidTransition
from amr_ingest.core.models import (
    ALLOWED_TRANSITIONS,
    BatchFilter,
    ImportBatch,
    LedgerEvent,
)
from amr_ingest.core.models.import_batch import TERMINAL_STATUSES
from amr_ingest.observability.logger import get_logger
from amr_ingest.utils.validation import validate_batch_id, validate_limit

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

# Fields a transition may change alongside the status
MUTABLE_FIELDS = frozenset({
    "counts",
    "row_ids",
    "error",
    "checkpoint_offset",
    "issues",
    "quality",
    "file_format",
})

# Non-terminal statuses that may be re-entered to record progress (checkpoints)
PROGRESS_STATUSES = frozenset({"pending", "parsing", "validating"})


class ImportLedger(ABC):
    """
    Base ledger: state machine and change validation shared by all backends.
    """

    def open_batch(self, batch: ImportBatch) -> ImportBatch:
        """
        Register a new pending batch.

        Raises:
            ValueError: If the batch is not pending or the id is taken
        """
        validate_batch_id(batch.batch_id)
        if batch.status != "pending":
            raise ValueError(f"New batches must be pending, got '{batch.status}'")
        event = LedgerEvent(
            batch_id=batch.batch_id,
            from_status=None,
            to_status="pending",
            actor=batch.actor,
            detail={"source_checksum": batch.source_checksum, "template": batch.template_name},
        )
        self._insert(batch, event)
        logger.info(
            f"Opened batch {batch.batch_id}",
            extra={"batch_id": batch.batch_id, "source": batch.source_name},
        )
        return batch

    def transition(
        self,
        batch_id: str,
        to_status: str,
        actor: str | None = None,
        detail: dict[str, Any] | None = None,
        **changes: Any,
    ) -> ImportBatch:
        """
        Move a batch to a new status, optionally updating mutable fields.

        Re-entering the current status is accepted for pending, parsing and
        validating batches; it records progress such as a checkpoint.

        Raises:
            BatchNotFound: If the batch does not exist
            InvalidTransition: If the state machine forbids the change
            ValueError: If a change targets an immutable field
        """
        batch_id = validate_batch_id(batch_id)
        illegal = set(changes) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Ledger fields cannot be changed: {sorted(illegal)}")
        return self._apply(batch_id, to_status, actor, detail or {}, changes)

    @staticmethod
    def _next_state(
        current: ImportBatch,
        to_status: str,
        actor: str | None,
        detail: dict[str, Any],
        changes: dict[str, Any],
    ) -> tuple[ImportBatch, LedgerEvent]:
        """Validate a transition and build the new batch state and its event."""
        same = to_status == current.status
        if same and current.status not in PROGRESS_STATUSES:
            raise InvalidTransition(current.batch_id, current.status, to_status)
        if not same and to_status not in ALLOWED_TRANSITIONS.get(current.status, frozenset()):
            raise InvalidTransition(current.batch_id, current.status, to_status)
        if current.status == "committed" and "row_ids" in changes:
            raise ValueError(f"Row ids of committed batch {current.batch_id} are fixed")

        now = datetime.now(timezone.utc)
        data = current.model_dump()
        data.update(changes)
        data["status"] = to_status
        if to_status == "committed":
            data["committed_at"] = now
        elif to_status == "rolled-back":
            data["rolled_back_at"] = now

        updated = ImportBatch.model_validate(data)
        event = LedgerEvent(
            batch_id=current.batch_id,
            from_status=current.status,
            to_status=to_status,
            actor=actor or current.actor,
            detail=detail,
            created_at=now,
        )
        return updated, event

    @abstractmethod
    def _insert(self, batch: ImportBatch, event: LedgerEvent) -> None:
        ...

    @abstractmethod
    def _apply(
        self,
        batch_id: str,
        to_status: str,
        actor: str | None,
        detail: dict[str, Any],
        changes: dict[str, Any],
    ) -> ImportBatch:
        ...

    @abstractmethod
    def get_batch(self, batch_id: str) -> ImportBatch:
        """
        Raises:
            BatchNotFound: If the batch does not exist
        """

    @abstractmethod
    def list_batches(self, batch_filter: BatchFilter | None = None) -> list[ImportBatch]:
        """Batches matching the filter, newest first."""

    @abstractmethod
    def events(self, batch_id: str) -> list[LedgerEvent]:
        """The batch's audit trail in order."""

    @staticmethod
    def is_terminal(batch: ImportBatch) -> bool:
        return batch.status in TERMINAL_STATUSES


class InMemoryImportLedger(ImportLedger):
    """Process-local ledger for tests, dry runs and the CLI without a database."""

    def __init__(self):
        self._batches: dict[str, ImportBatch] = {}
        self._events: dict[str, list[LedgerEvent]] = {}
        self._lock = threading.RLock()
        self._event_seq = 0

    def _insert(self, batch: ImportBatch, event: LedgerEvent) -> None:
        with self._lock:
            if batch.batch_id in self._batches:
                raise ValueError(f"Batch {batch.batch_id} already exists")
            self._batches[batch.batch_id] = batch
            self._events[batch.batch_id] = [self._numbered(event)]

    def _apply(self, batch_id, to_status, actor, detail, changes) -> ImportBatch:
        with self._lock:
            current = self.get_batch(batch_id)
            updated, event = self._next_state(current, to_status, actor, detail, changes)
            self._batches[batch_id] = updated
            self._events[batch_id].append(self._numbered(event))
        logger.debug(f"Batch {batch_id}: {current.status} -> {to_status}")
        return updated

    def _numbered(self, event: LedgerEvent) -> LedgerEvent:
        self._event_seq += 1
        return event.model_copy(update={"event_id": self._event_seq})

    def get_batch(self, batch_id: str) -> ImportBatch:
        with self._lock:
            batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        return batch

    def list_batches(self, batch_filter: BatchFilter | None = None) -> list[ImportBatch]:
        batch_filter = batch_filter or BatchFilter()
        with self._lock:
            batches = list(self._batches.values())
        matching = [b for b in batches if batch_filter.matches(b)]
        matching.sort(key=lambda b: b.created_at, reverse=True)
        return matching[: batch_filter.limit]

    def events(self, batch_id: str) -> list[LedgerEvent]:
        with self._lock:
            if batch_id not in self._events:
                raise BatchNotFound(batch_id)
            return list(self._events[batch_id])


class PostgresImportLedger(ImportLedger):
    """
    Ledger stored in the import_batch and ledger_event tables.

    Transitions lock the batch row (SELECT ... FOR UPDATE) so concurrent
    transitions on one batch are serialized by the database.
    """

    BATCH_COLUMNS = (
        "batch_id", "status", "source_checksum", "source_name", "file_format", "actor",
        "target_table", "template_snapshot", "counts", "row_ids", "error",
        "checkpoint_offset", "issues", "quality", "created_at", "committed_at",
        "rolled_back_at",
    )
    JSON_COLUMNS = frozenset({"template_snapshot", "counts", "row_ids", "issues", "quality"})

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def _row(self, batch: ImportBatch) -> dict[str, Any]:
        data = batch.model_dump(mode="json")
        row = {column: data.get(column) for column in self.BATCH_COLUMNS}
        for column in self.JSON_COLUMNS:
            if row[column] is not None:
                row[column] = Jsonb(row[column])
        for column in ("created_at", "committed_at", "rolled_back_at"):
            row[column] = getattr(batch, column)
        return row

    @staticmethod
    def _insert_event(cur: psycopg.Cursor, event: LedgerEvent) -> None:
        cur.execute(
            """
            INSERT INTO ledger_event (batch_id, from_status, to_status, actor, detail, created_at)
            VALUES (%(batch_id)s, %(from_status)s, %(to_status)s, %(actor)s, %(detail)s, %(created_at)s)
            """,
            {
                "batch_id": event.batch_id,
                "from_status": event.from_status,
                "to_status": event.to_status,
                "actor": event.actor,
                "detail": Jsonb(event.detail),
                "created_at": event.created_at,
            },
        )

    def _insert(self, batch: ImportBatch, event: LedgerEvent) -> None:
        columns = ", ".join(self.BATCH_COLUMNS)
        values = ", ".join(f"%({column})s" for column in self.BATCH_COLUMNS)
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO import_batch ({columns}) VALUES ({values})",
                        self._row(batch),
                    )
                    self._insert_event(cur, event)
        except psycopg.errors.UniqueViolation as e:
            raise ValueError(f"Batch {batch.batch_id} already exists") from e
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to open batch {batch.batch_id}: {e}")
            raise

    def _apply(self, batch_id, to_status, actor, detail, changes) -> ImportBatch:
        assignments = ", ".join(
            f"{column} = %({column})s" for column in self.BATCH_COLUMNS if column != "batch_id"
        )
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT * FROM import_batch WHERE batch_id = %s FOR UPDATE", (batch_id,)
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise BatchNotFound(batch_id)
                    current = ImportBatch.model_validate(row)
                    updated, event = self._next_state(current, to_status, actor, detail, changes)
                    cur.execute(
                        f"UPDATE import_batch SET {assignments} WHERE batch_id = %(batch_id)s",
                        self._row(updated),
                    )
                    self._insert_event(cur, event)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to transition batch {batch_id} to {to_status}: {e}")
            raise
        logger.debug(f"Batch {batch_id}: {current.status} -> {to_status}")
        return updated

    def get_batch(self, batch_id: str) -> ImportBatch:
        rows = self.pool.execute_query(
            "SELECT * FROM import_batch WHERE batch_id = %s", (validate_batch_id(batch_id),)
        )
        if not rows:
            raise BatchNotFound(batch_id)
        return ImportBatch.model_validate(rows[0])

    def list_batches(self, batch_filter: BatchFilter | None = None) -> list[ImportBatch]:
        batch_filter = batch_filter or BatchFilter()
        clauses, params = [], {"limit": validate_limit(batch_filter.limit)}
        if batch_filter.status is not None:
            clauses.append("status = %(status)s")
            params["status"] = batch_filter.status
        if batch_filter.actor is not None:
            clauses.append("actor = %(actor)s")
            params["actor"] = batch_filter.actor
        if batch_filter.source_checksum is not None:
            clauses.append("source_checksum = %(source_checksum)s")
            params["source_checksum"] = batch_filter.source_checksum
        if batch_filter.created_after is not None:
            clauses.append("created_at >= %(created_after)s")
            params["created_after"] = batch_filter.created_after

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.pool.execute_query(
            f"SELECT * FROM import_batch {where} ORDER BY created_at DESC LIMIT %(limit)s",
            params,
        )
        return [ImportBatch.model_validate(row) for row in rows]

    def events(self, batch_id: str) -> list[LedgerEvent]:
        self.get_batch(batch_id)
        rows = self.pool.execute_query(
            "SELECT * FROM ledger_event WHERE batch_id = %s ORDER BY event_id", (batch_id,)
        )
        return [LedgerEvent.model_validate(row) for row in rows]
