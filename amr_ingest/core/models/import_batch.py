"""
ImportBatch model and the ledger records around it.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from .isolate import NormalizedIsolateUnit
from .mapping_template import MappingTemplate
from .quality import BatchQualitySummary, QualityIssue

BatchStatus = Literal[
    "pending", "parsing", "validating", "committed", "failed", "cancelled", "rolled-back"
]

# Status transitions permitted by the batch state machine
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"parsing", "failed", "cancelled"}),
    "parsing": frozenset({"validating", "failed", "cancelled"}),
    "validating": frozenset({"committed", "failed", "cancelled"}),
    "committed": frozenset({"rolled-back"}),
    "failed": frozenset(),
    "cancelled": frozenset(),
    "rolled-back": frozenset(),
}

TERMINAL_STATUSES = frozenset({"failed", "cancelled", "rolled-back"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchCounts(BaseModel):
    """
    Attributes:
        parsed: Source rows read
        interpreted: Result units assigned a category
        committed: Result units written to the store
        errored: Rows excluded by a fatal issue plus non-committable units
    """

    parsed: int = Field(0, ge=0)
    interpreted: int = Field(0, ge=0)
    committed: int = Field(0, ge=0)
    errored: int = Field(0, ge=0)


class ImportBatch(BaseModel):
    """
    Durable record of one import.

    Status transitions through the ImportLedger are the only mutation path.
    Once committed, row_ids is fixed and drives rollback.

    Attributes:
        batch_id: Unique batch identifier
        template_snapshot: Copy of the template used (None in auto-map mode)
        source_checksum: SHA-256 of the source file
        source_name: Original file name
        file_format: Detected or declared format
        status: Current state machine status
        counts: Row and unit counters
        actor: Committing user
        target_table: Persistence target written by the batch
        row_ids: Row ids written at commit time
        error: Cause attached when the batch fails
        checkpoint_offset: Row offset a paused batch resumes from
        issues: Batch-level issue summary
        quality: Batch quality aggregate
        created_at: When the batch was opened
        committed_at: When commit succeeded
        rolled_back_at: When rollback succeeded
    """

    batch_id: str = Field(..., min_length=1)
    template_snapshot: MappingTemplate | None = None
    source_checksum: str
    source_name: str | None = None
    file_format: str | None = None
    status: BatchStatus = "pending"
    counts: BatchCounts = Field(default_factory=BatchCounts)
    actor: str
    target_table: str = "ast_result"
    row_ids: list[str] = Field(default_factory=list)
    error: str | None = None
    checkpoint_offset: int | None = None
    issues: list[QualityIssue] = Field(default_factory=list)
    quality: BatchQualitySummary | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    committed_at: datetime | None = None
    rolled_back_at: datetime | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "batch_id": "batch_20240105_3f2a9c",
                "source_checksum": "9f86d081884c7d65...",
                "source_name": "ecoli_q1.csv",
                "status": "committed",
                "counts": {"parsed": 3, "interpreted": 6, "committed": 6, "errored": 0},
                "actor": "lab-user-17",
                "row_ids": ["iso-1", "res-1", "res-2"],
            }
        }

    @property
    def template_name(self) -> str:
        if self.template_snapshot is None:
            return "auto"
        return f"{self.template_snapshot.owner}/{self.template_snapshot.name}"


class LedgerEvent(BaseModel):
    """
    Audit entry for one ledger status transition.

    Attributes:
        event_id: Auto-increment id (set by persistent ledgers)
        batch_id: Batch the transition belongs to
        from_status: Status before the transition
        to_status: Status after the transition
        actor: Who triggered it
        detail: Free-form context (counts, error cause)
        created_at: When the transition happened
    """

    event_id: int | None = None
    batch_id: str
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class BatchFilter(BaseModel):
    """Filter for ImportLedger.list_batches()."""

    status: BatchStatus | None = None
    actor: str | None = None
    source_checksum: str | None = None
    created_after: datetime | None = None
    limit: int = Field(100, gt=0, le=10000)

    def matches(self, batch: ImportBatch) -> bool:
        if self.status is not None and batch.status != self.status:
            return False
        if self.actor is not None and batch.actor != self.actor:
            return False
        if self.source_checksum is not None and batch.source_checksum != self.source_checksum:
            return False
        if self.created_after is not None and batch.created_at < self.created_after:
            return False
        return True


class RowReport(BaseModel):
    """Issues raised for one source row."""

    row_number: int
    score: float | None = None
    fatal: bool = False
    issues: list[QualityIssue] = Field(default_factory=list)


class BatchReport(BaseModel):
    """
    Structured result returned to the caller regardless of partial failure.

    Attributes:
        batch: Ledger entry as of the end of the run
        quality: Batch quality aggregate
        rows: Per-row issues (rows without issues are omitted)
        warnings: Batch-level warnings (e.g. completeness below threshold)
        paused: True when the run stopped at a checkpoint
        units: Normalized records in row order (not serialized)
    """

    batch: ImportBatch
    quality: BatchQualitySummary = Field(default_factory=BatchQualitySummary)
    rows: list[RowReport] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    paused: bool = False
    units: list[NormalizedIsolateUnit] = Field(default_factory=list, exclude=True, repr=False)

    @property
    def status(self) -> str:
        return self.batch.status

    def issues_of_kind(self, kind: str) -> list[tuple[int, QualityIssue]]:
        return [
            (row.row_number, issue)
            for row in self.rows
            for issue in row.issues
            if issue.kind == kind
        ]
