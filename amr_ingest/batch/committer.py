"""
Batch committer: the transactional write of one batch and its reversal.

Flow of commit():
1. Check the actor may write the isolate and result tables
2. Begin a store transaction
3. Write every committable isolate and its interpreted results only
4. Commit and record the written row ids on the ledger (committed)

Any store error aborts the transaction and moves the batch to failed.
rollback() deletes exactly the recorded row ids and moves the batch to
rolled-back.
"""

import threading
from collections.abc import Sequence

from amr_ingest.core.errors import (
    AlreadyRolledBack,
    BatchNotCommitted,
    CommitFailure,
    NotAuthorized,
    RollbackError,
    TemplateNotFound,
)
from amr_ingest.core.mapping import TemplateStore
from amr_ingest.core.models import AuthorizationContext, ImportBatch, NormalizedIsolateUnit
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger
from amr_ingest.warehouse.ledger import ImportLedger
from amr_ingest.warehouse.store import ISOLATE_TABLE, PersistenceStore

from .notifications import BatchEvent, NotificationSink

logger = get_logger(__name__)


WRITTEN_STATUSES = ("interpreted", "uninterpretable")


def committable_units(units: Sequence[NormalizedIsolateUnit]) -> list[NormalizedIsolateUnit]:
    """
    Non-fatal isolates with at least one interpreted or uninterpretable result.

    An uninterpretable result row is never written, but its isolate is: the
    specimen metadata stays on record without the missing interpretation.
    """
    return [
        unit for unit in units
        if not unit.fatal and any(r.status in WRITTEN_STATUSES for r in unit.results)
    ]


class BatchCommitter:
    """
    Writes and reverses batches.

    Commits and rollbacks of the same batch are serialized by a per-batch
    lock; different batches proceed independently.

    Args:
        store: Persistence store receiving the rows
        ledger: Import ledger recording every transition
        template_store: Store whose template versions are locked on commit
        notifier: Sink receiving rollback events
    """

    def __init__(
        self,
        store: PersistenceStore,
        ledger: ImportLedger,
        template_store: TemplateStore | None = None,
        notifier: NotificationSink | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.template_store = template_store
        self.notifier = notifier
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _batch_lock(self, batch_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(batch_id, threading.Lock())

    def commit(
        self,
        batch: ImportBatch,
        units: Sequence[NormalizedIsolateUnit],
        auth: AuthorizationContext,
        **changes,
    ) -> ImportBatch:
        """
        Commit a validated batch.

        Args:
            batch: Ledger entry of the batch (status validating)
            units: Every normalized record of the batch; fatal records and
                   non-interpreted results are skipped
            auth: Acting user and writable tables
            **changes: Extra ledger fields recorded with the final status

        Returns:
            The committed ledger entry

        Raises:
            NotAuthorized: If the actor may not write a target table
            CommitFailure: If the store failed (the batch is then failed)
        """
        for table in (ISOLATE_TABLE, batch.target_table):
            if not auth.can_write(table):
                error = NotAuthorized(auth.actor, table)
                self.ledger.transition(
                    batch.batch_id, "failed", actor=auth.actor,
                    detail={"error": str(error)}, error=str(error), **changes,
                )
                raise error

        to_write = committable_units(units)
        with self._batch_lock(batch.batch_id):
            logger.info(
                f"Committing batch {batch.batch_id}: {len(to_write)} isolate(s)",
                extra={"batch_id": batch.batch_id, "actor": auth.actor},
            )
            tx = self.store.begin_batch_transaction(batch.batch_id)
            try:
                with metrics.track_duration(metrics.stage_duration_seconds, stage="commit"):
                    row_ids = self.store.write_units(tx, to_write)
                    self.store.commit(tx)
            except Exception as e:
                logger.error(f"Commit of batch {batch.batch_id} failed: {e}", exc_info=True)
                self.store.abort(tx)
                self.ledger.transition(
                    batch.batch_id, "failed", actor=auth.actor,
                    detail={"error": str(e)}, error=f"{type(e).__name__}: {e}", **changes,
                )
                raise CommitFailure(batch.batch_id, e) from e

            committed = self.ledger.transition(
                batch.batch_id, "committed", actor=auth.actor,
                detail={"rows": len(row_ids)}, row_ids=row_ids, **changes,
            )

        isolates = sum(1 for row_id in row_ids if row_id.startswith("iso-"))
        metrics.increment_counter(metrics.rows_committed_total, isolates, table=ISOLATE_TABLE)
        metrics.increment_counter(
            metrics.rows_committed_total, len(row_ids) - isolates, table=batch.target_table
        )
        self._lock_template(committed)
        logger.info(
            f"Committed batch {batch.batch_id}: {len(row_ids)} row(s)",
            extra={"batch_id": batch.batch_id, "rows": len(row_ids)},
        )
        return committed

    def _lock_template(self, batch: ImportBatch) -> None:
        template = batch.template_snapshot
        if self.template_store is None or template is None:
            return
        try:
            self.template_store.lock(template.owner, template.name, template.version)
        except TemplateNotFound:
            logger.debug(f"Template {batch.template_name} is not stored; nothing to lock")

    def rollback(self, batch_id: str, actor: str | None = None) -> ImportBatch:
        """
        Reverse a committed batch.

        Raises:
            BatchNotFound: If the batch does not exist
            AlreadyRolledBack: If the batch was rolled back before
            BatchNotCommitted: If the batch never committed
            RollbackError: If the store failed to delete the rows
        """
        with self._batch_lock(batch_id):
            batch = self.ledger.get_batch(batch_id)
            if batch.status == "rolled-back":
                raise AlreadyRolledBack(batch_id)
            if batch.status != "committed":
                raise BatchNotCommitted(batch_id, batch.status)

            try:
                deleted = self.store.delete_by_row_ids(batch.row_ids)
            except Exception as e:
                logger.error(f"Rollback of batch {batch_id} failed: {e}", exc_info=True)
                raise RollbackError(batch_id, f"Rollback of batch {batch_id} failed: {e}") from e

            if deleted != len(batch.row_ids):
                logger.warning(
                    f"Batch {batch_id} recorded {len(batch.row_ids)} rows, deleted {deleted}"
                )
            rolled_back = self.ledger.transition(
                batch_id, "rolled-back", actor=actor, detail={"deleted": deleted}
            )

        metrics.increment_counter(metrics.rows_rolled_back_total, deleted)
        metrics.increment_counter(metrics.batches_total, status="rolled-back")
        logger.info(f"Rolled back batch {batch_id}: {deleted} row(s) deleted")
        if self.notifier is not None:
            self.notifier.notify(BatchEvent(
                event_type="rolled-back",
                batch_id=batch_id,
                status=rolled_back.status,
                actor=actor or rolled_back.actor,
                counts=rolled_back.counts.model_dump(),
            ))
        return rolled_back
