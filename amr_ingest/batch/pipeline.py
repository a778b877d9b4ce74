"""
Import pipeline orchestration.

Coordinates the flow: parse → map → classify → interpret → assess → commit,
with the import ledger updated at every phase transition.
"""

import threading
import uuid
from collections.abc import Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from amr_ingest.core.classification import ValueClassifier
from amr_ingest.core.config import EngineSettings
from amr_ingest.core.errors import (
    CancellationRefused,
    CommitFailure,
    CorruptSource,
    NotAuthorized,
    UnsupportedFormat,
)
from amr_ingest.core.interpretation import InterpretationEngine
from amr_ingest.core.mapping import ColumnMatcher, MappingResolver, TemplateStore, load_synonyms
from amr_ingest.core.models import (
    AuthorizationContext,
    BatchCounts,
    BatchReport,
    ImportBatch,
    MappingTemplate,
    NormalizedIsolateUnit,
    QualityAssessment,
    RawRecord,
    RowReport,
    SourceFile,
)
from amr_ingest.core.quality import QualityScorer
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger, log_operation
from amr_ingest.parsing import FileReader, RecordStream
from amr_ingest.reference import ReferenceDataLoader, ReferenceDataService
from amr_ingest.warehouse.ledger import PROGRESS_STATUSES, ImportLedger, InMemoryImportLedger
from amr_ingest.warehouse.store import InMemoryPersistenceStore, PersistenceStore

from .checkpoint import Checkpoint, CheckpointStore
from .committer import BatchCommitter, committable_units
from .notifications import BatchEvent, LoggingNotificationSink, NotificationSink

logger = get_logger(__name__)


def new_batch_id() -> str:
    return f"batch_{datetime.now(timezone.utc):%Y%m%d}_{uuid.uuid4().hex[:12]}"


class PipelineControl:
    """
    Pause, resume and cancel handle for a running batch.

    The pipeline checks the handle before reading each row. A pause lets
    in-flight rows drain and checkpoints the batch; a cancel does the same
    and ends the batch as cancelled. Once commit has started a cancel is
    refused.
    """

    def __init__(self):
        self.batch_id: str | None = None
        self._pause = threading.Event()
        self._cancel = threading.Event()
        self._committing = threading.Event()
        self._lock = threading.Lock()

    def pause(self) -> None:
        self._pause.set()

    def resume(self) -> None:
        """Withdraw a pause request. A paused batch continues via ImportPipeline.resume()."""
        self._pause.clear()

    def cancel(self) -> None:
        """
        Raises:
            CancellationRefused: If the batch is already committing
        """
        with self._lock:
            if self._committing.is_set():
                raise CancellationRefused(self.batch_id or "<unknown>")
            self._cancel.set()

    @property
    def pause_requested(self) -> bool:
        return self._pause.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def begin_commit(self) -> bool:
        """Enter the commit phase; False when a cancel got there first."""
        with self._lock:
            if self._cancel.is_set():
                return False
            self._committing.set()
            return True


@dataclass
class _BatchContext:
    """Per-batch collaborators (template-bound classifier, batch-scoped scorer)."""

    template: MappingTemplate | None
    classifier: ValueClassifier
    scorer: QualityScorer


@dataclass
class _Progress:
    units: list[NormalizedIsolateUnit]
    assessments: list[QualityAssessment]
    next_offset: int
    stopped: str | None = None


class ImportPipeline:
    """
    Orchestrates one import from file bytes to a committed batch.

    Flow:
    1. Open the source file and detect its format (pending → parsing)
    2. Map, classify, interpret and assess every row on a worker pool
    3. Aggregate quality and counts (parsing → validating)
    4. Commit the committable records (validating → committed), or end
       failed when nothing is committable

    Rows are processed by up to settings.max_workers threads with at most
    twice that many rows in flight; results are put back in row order.
    """

    def __init__(
        self,
        reference: ReferenceDataService,
        store: PersistenceStore,
        ledger: ImportLedger,
        settings: EngineSettings | None = None,
        template_store: TemplateStore | None = None,
        notifier: NotificationSink | None = None,
        checkpoints: CheckpointStore | None = None,
        file_reader: FileReader | None = None,
        matcher: ColumnMatcher | None = None,
    ):
        """
        Initialize the import pipeline.

        Args:
            reference: Organisms, antibiotics and breakpoint rules
            store: Persistence store written by commits
            ledger: Import ledger
            settings: Engine settings (defaults when omitted)
            template_store: Template store whose versions get locked on commit
            notifier: Sink for batch lifecycle events
            checkpoints: Checkpoint store for pause/resume
            file_reader: Source file reader
            matcher: Column matcher for auto-map mode
        """
        self.settings = settings or EngineSettings()
        self.reference = reference
        self.store = store
        self.ledger = ledger
        self.template_store = template_store
        self.notifier = notifier or LoggingNotificationSink()
        self.checkpoints = checkpoints or CheckpointStore(self.settings.checkpoint_dir)
        self.file_reader = file_reader or FileReader()
        self.resolver = MappingResolver(
            reference=reference,
            matcher=matcher,
            required_fields=self.settings.required_fields,
            dayfirst=self.settings.dayfirst,
        )
        self.interpreter = InterpretationEngine(reference)
        self.committer = BatchCommitter(store, ledger, template_store, self.notifier)

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        reference: ReferenceDataService | None = None,
        store: PersistenceStore | None = None,
        ledger: ImportLedger | None = None,
        **kwargs: Any,
    ) -> "ImportPipeline":
        """
        Build a pipeline from settings, loading reference data and synonyms
        from the configured files. Store and ledger default to in-memory.
        """
        if reference is None:
            reference = ReferenceDataLoader(settings.reference_path).load()
        if "matcher" not in kwargs and settings.synonyms_path.exists():
            kwargs["matcher"] = ColumnMatcher(synonyms=load_synonyms(settings.synonyms_path))
        return cls(
            reference=reference,
            store=store or InMemoryPersistenceStore(settings.target_table),
            ledger=ledger or InMemoryImportLedger(),
            settings=settings,
            **kwargs,
        )

    # =======================
    # ENTRY POINTS
    # =======================

    def run(
        self,
        source: SourceFile,
        auth: AuthorizationContext,
        template: MappingTemplate | None = None,
        control: PipelineControl | None = None,
        batch_id: str | None = None,
    ) -> BatchReport:
        """
        Import a source file as a new batch.

        Args:
            source: Uploaded file
            auth: Acting user and writable tables
            template: Mapping template; None runs auto-map mode
            control: Handle for pause/cancel requests
            batch_id: Batch id (generated when omitted)

        Returns:
            BatchReport with the final (or paused) ledger entry, the quality
            aggregate and every row-level issue

        Raises:
            NotAuthorized: If the actor may not write the target tables
            CommitFailure: If the store failed; the batch is failed
        """
        batch = ImportBatch(
            batch_id=batch_id or new_batch_id(),
            template_snapshot=template,
            source_checksum=source.checksum,
            source_name=source.name,
            actor=auth.actor,
            target_table=self.settings.target_table,
        )
        self.ledger.open_batch(batch)
        return self._execute(batch, source, auth, control or PipelineControl(), None)

    def resume(
        self,
        batch_id: str,
        source: SourceFile,
        auth: AuthorizationContext,
        control: PipelineControl | None = None,
    ) -> BatchReport:
        """
        Continue a paused batch from its checkpoint.

        Raises:
            BatchNotFound: If the batch does not exist
            ValueError: If the batch is finished or the file differs from
                        the one the batch started with
        """
        batch = self.ledger.get_batch(batch_id)
        if batch.status not in PROGRESS_STATUSES:
            raise ValueError(f"Batch {batch_id} is '{batch.status}' and cannot be resumed")
        if source.checksum != batch.source_checksum:
            raise ValueError(f"Source file {source.name} does not match batch {batch_id}")

        control = control or PipelineControl()
        control.resume()
        checkpoint = self.checkpoints.load(batch_id)
        if checkpoint is None and batch.checkpoint_offset:
            logger.warning(
                f"Batch {batch_id} has no stored checkpoint; restarting from the first row"
            )
        logger.info(
            f"Resuming batch {batch_id} at offset {checkpoint.offset if checkpoint else 0}"
        )
        return self._execute(batch, source, auth, control, checkpoint)

    def rollback(self, batch_id: str, actor: str | None = None) -> ImportBatch:
        """Reverse a committed batch (see BatchCommitter.rollback)."""
        return self.committer.rollback(batch_id, actor=actor)

    # =======================
    # EXECUTION
    # =======================

    def _context(self, template: MappingTemplate | None) -> _BatchContext:
        settings = self.settings
        return _BatchContext(
            template=template,
            classifier=ValueClassifier(
                template=template,
                default_standard=settings.default_breakpoint_standard,
                default_version=settings.default_breakpoint_version,
                reference=self.reference,
                dayfirst=settings.dayfirst,
            ),
            scorer=QualityScorer(
                self.reference,
                weights=settings.check_weights or None,
                min_collection_date=settings.min_collection_date,
                completeness_threshold=settings.completeness_threshold,
            ),
        )

    def _execute(
        self,
        batch: ImportBatch,
        source: SourceFile,
        auth: AuthorizationContext,
        control: PipelineControl,
        checkpoint: Checkpoint | None,
    ) -> BatchReport:
        control.batch_id = batch.batch_id
        ctx = self._context(batch.template_snapshot)
        done_units = list(checkpoint.units) if checkpoint else []
        done_assessments = list(checkpoint.assessments) if checkpoint else []
        ctx.scorer.remember(done_units)
        offset = checkpoint.offset if checkpoint else 0

        with log_operation(f"Import batch {batch.batch_id}", logger=logger, batch_id=batch.batch_id):
            # Step 1: open the source
            logger.info(f"Opening {source.name}...")
            try:
                with metrics.track_duration(metrics.stage_duration_seconds, stage="parse"):
                    stream = self.file_reader.open(source)
            except (UnsupportedFormat, CorruptSource) as e:
                logger.error(f"Source file rejected: {e}")
                batch = self._fail(batch, f"{type(e).__name__}: {e}", auth)
                return BatchReport(batch=batch)

            if batch.status == "pending":
                batch = self.ledger.transition(
                    batch.batch_id, "parsing", actor=auth.actor,
                    detail={"file_format": stream.file_format},
                    file_format=stream.file_format,
                )

            # Step 2: rows through mapping, classification, interpretation, quality
            logger.info(f"Processing rows from offset {offset}...")
            try:
                progress = self._process(stream, offset, ctx, control)
            except (UnsupportedFormat, CorruptSource) as e:
                # container damage found while reading rows (bad JSON, missing sheet)
                logger.error(f"Source file rejected while reading: {e}")
                batch = self._fail(batch, f"{type(e).__name__}: {e}", auth)
                return BatchReport(batch=batch)
            except Exception as e:
                logger.error(f"Row processing aborted: {e}", exc_info=True)
                self._fail(batch, f"{type(e).__name__}: {e}", auth)
                raise

            units = done_units + progress.units
            assessments = done_assessments + progress.assessments
            logger.info(f"Processed {len(progress.units)} row(s), {len(units)} in batch")

            if progress.stopped == "pause":
                return self._pause(batch, auth, units, assessments, progress.next_offset, ctx)
            if progress.stopped == "cancel":
                return self._cancel(batch, auth, units, assessments, ctx)

            # Step 3: aggregate
            report = self._report(batch, units, assessments, ctx)
            batch = self.ledger.transition(
                batch.batch_id, "validating", actor=auth.actor,
                detail={"counts": report.batch.counts.model_dump()},
                counts=report.batch.counts,
                quality=report.quality,
            )

            if control.cancel_requested:
                return self._cancel(batch, auth, units, assessments, ctx)

            # Step 4: commit
            changes = {"issues": report.batch.issues}
            if not committable_units(units):
                logger.warning(f"Batch {batch.batch_id} has no committable result units")
                batch = self._fail(
                    batch, "No committable result units", auth, issues=report.batch.issues
                )
                return report.model_copy(update={"batch": batch})

            if not control.begin_commit():
                return self._cancel(batch, auth, units, assessments, ctx)

            try:
                batch = self.committer.commit(batch, units, auth, **changes)
            except (CommitFailure, NotAuthorized) as e:
                failed = self.ledger.get_batch(batch.batch_id)
                self._finish(failed, "failed", auth, error=str(e))
                raise

            self._finish(batch, "completed", auth)
            return report.model_copy(update={"batch": batch})

    def _process(
        self,
        stream: RecordStream,
        offset: int,
        ctx: _BatchContext,
        control: PipelineControl,
    ) -> _Progress:
        """
        Run stages 2-5 over the stream on the worker pool.

        Before each row is read the control handle is checked; on pause or
        cancel no further rows are read and the in-flight rows drain.
        """
        max_workers = self.settings.max_workers
        max_in_flight = max_workers * 2
        results: dict[int, tuple[NormalizedIsolateUnit, dict]] = {}
        in_flight: set[Future] = set()
        records: Iterator[RawRecord] = iter(stream.from_offset(offset))
        next_offset = offset
        stopped = None

        def collect(futures) -> None:
            for future in futures:
                unit, checks = future.result()
                results[unit.row_number] = (unit, checks)

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="amr-row") as executor:
            while True:
                if control.cancel_requested:
                    stopped = "cancel"
                    break
                if control.pause_requested:
                    stopped = "pause"
                    break
                record = next(records, None)
                if record is None:
                    break
                if len(in_flight) >= max_in_flight:
                    finished, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                    collect(finished)
                in_flight.add(executor.submit(self._process_row, record, ctx))
                next_offset = record.row_number + 1

            finished, _ = wait(in_flight)
            collect(finished)

        # duplicates are judged in row order, not worker completion order
        units = [results[row][0] for row in sorted(results)]
        assessments = [ctx.scorer.finalize(unit, results[unit.row_number][1]) for unit in units]
        return _Progress(
            units=units,
            assessments=assessments,
            next_offset=next_offset,
            stopped=stopped,
        )

    def _process_row(
        self, record: RawRecord, ctx: _BatchContext
    ) -> tuple[NormalizedIsolateUnit, dict]:
        with metrics.track_duration(metrics.stage_duration_seconds, stage="map"):
            partial = self.resolver.resolve_record(record, ctx.template)
        with metrics.track_duration(metrics.stage_duration_seconds, stage="classify"):
            unit = ctx.classifier.classify(partial)
        with metrics.track_duration(metrics.stage_duration_seconds, stage="interpret"):
            unit = self.interpreter.interpret(unit)
        with metrics.track_duration(metrics.stage_duration_seconds, stage="assess"):
            checks = ctx.scorer.record_checks(unit)
        return unit, checks

    # =======================
    # OUTCOMES
    # =======================

    @staticmethod
    def _counts(units: list[NormalizedIsolateUnit]) -> BatchCounts:
        interpreted = committed = errored = 0
        for unit in units:
            if unit.fatal:
                errored += 1
                continue
            for result in unit.results:
                if result.committable:
                    interpreted += 1
                    committed += 1
                else:
                    errored += 1
        return BatchCounts(
            parsed=len(units), interpreted=interpreted, committed=committed, errored=errored
        )

    def _report(
        self,
        batch: ImportBatch,
        units: list[NormalizedIsolateUnit],
        assessments: list[QualityAssessment],
        ctx: _BatchContext,
    ) -> BatchReport:
        summary = ctx.scorer.summarize(assessments)
        rows = [
            RowReport(
                row_number=a.row_number, score=a.score, fatal=a.fatal, issues=list(a.issues)
            )
            for a in assessments
            if a.issues
        ]
        warnings = []
        if summary.below_threshold:
            warnings.append(
                f"Completeness {summary.completeness:.1f}% is below the "
                f"{summary.threshold:.1f}% threshold"
            )
            logger.warning(f"Batch {batch.batch_id}: {warnings[-1]}")

        issues = [issue for row in rows for issue in row.issues]
        snapshot = batch.model_copy(update={"counts": self._counts(units), "issues": issues})
        return BatchReport(
            batch=snapshot, quality=summary, rows=rows, warnings=warnings, units=units
        )

    def _pause(self, batch, auth, units, assessments, next_offset, ctx) -> BatchReport:
        self.checkpoints.save(Checkpoint(
            batch_id=batch.batch_id,
            offset=next_offset,
            units=units,
            assessments=assessments,
        ))
        batch = self.ledger.transition(
            batch.batch_id, batch.status, actor=auth.actor,
            detail={"paused_at": next_offset},
            checkpoint_offset=next_offset,
            counts=BatchCounts(parsed=len(units)),
        )
        logger.info(f"Paused batch {batch.batch_id} at offset {next_offset}")
        self._notify("paused", batch, auth)
        report = self._report(batch, units, assessments, ctx)
        return report.model_copy(update={"batch": batch, "paused": True})

    def _cancel(self, batch, auth, units, assessments, ctx) -> BatchReport:
        batch = self.ledger.transition(
            batch.batch_id, "cancelled", actor=auth.actor, detail={"rows": len(units)},
            counts=self._counts(units),
        )
        self.checkpoints.clear(batch.batch_id)
        logger.info(f"Cancelled batch {batch.batch_id} after {len(units)} row(s)")
        self._finish(batch, "cancelled", auth)
        report = self._report(batch, units, assessments, ctx)
        return report.model_copy(update={"batch": batch})

    def _fail(self, batch: ImportBatch, error: str, auth: AuthorizationContext, **changes) -> ImportBatch:
        current = self.ledger.get_batch(batch.batch_id)
        if self.ledger.is_terminal(current) or current.status == "committed":
            return current
        failed = self.ledger.transition(
            batch.batch_id, "failed", actor=auth.actor,
            detail={"error": error}, error=error, **changes,
        )
        self._finish(failed, "failed", auth, error=error)
        return failed

    def _finish(
        self, batch: ImportBatch, event_type: str, auth: AuthorizationContext, error: str | None = None
    ) -> None:
        self.checkpoints.clear(batch.batch_id)
        mean = batch.quality.mean_score if batch.quality else None
        metrics.record_batch_outcome(batch.status, batch.counts.parsed, mean, batch.template_name)
        self._notify(event_type, batch, auth, error=error)

    def _notify(
        self, event_type: str, batch: ImportBatch, auth: AuthorizationContext, error: str | None = None
    ) -> None:
        self.notifier.notify(BatchEvent(
            event_type=event_type,
            batch_id=batch.batch_id,
            status=batch.status,
            actor=auth.actor,
            counts=batch.counts.model_dump(),
            error=error or batch.error,
        ))
