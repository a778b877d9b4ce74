"""
Exception hierarchy for the import engine.

File-level errors (UnsupportedFormat, CorruptSource) abort an import before
any row is produced. Row-level errors (MappingError, ClassificationError,
InterpretationGap, ValidationIssue) are recorded as quality issues on the
row and never abort the batch. CommitFailure aborts the batch transactionally.
"""

from typing import Any


class AmrIngestError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(AmrIngestError):
    """Raised when a settings, template or reference file is malformed."""


# =======================
# PARSE STAGE
# =======================

class UnsupportedFormat(AmrIngestError):
    """Sniffing was inconclusive and no format override was given."""

    def __init__(self, message: str, file_name: str | None = None):
        self.file_name = file_name
        super().__init__(message)


class CorruptSource(AmrIngestError):
    """The byte stream cannot be decoded or the container is unreadable."""

    def __init__(self, message: str, file_name: str | None = None, offset: int | None = None):
        self.file_name = file_name
        self.offset = offset
        super().__init__(message)


# =======================
# ROW-LEVEL ERRORS
# =======================

class RowLevelError(AmrIngestError):
    """
    An error attached to a single row or result unit.

    Row-level errors are converted to QualityIssue entries via
    ``to_issue()`` and accumulated in the batch report.
    """

    kind = "row_error"
    default_severity = "warning"

    def __init__(
        self,
        field_name: str | None,
        message: str,
        severity: str | None = None,
        antibiotic: str | None = None,
    ):
        self.field_name = field_name
        self.message = message
        self.severity = severity or self.default_severity
        self.antibiotic = antibiotic
        super().__init__(f"[{self.kind}] {field_name}: {message}")

    def to_issue(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "field": self.field_name,
            "severity": self.severity,
            "message": self.message,
            "antibiotic": self.antibiotic,
        }


class MappingError(RowLevelError):
    """Required field unmapped (fatal) or custom field type mismatch (warning)."""

    kind = "mapping_error"


class ClassificationError(RowLevelError):
    """A result value is neither a category token nor a parseable number."""

    kind = "unclassifiable"


class MissingBreakpointStandard(ClassificationError):
    """Pre-interpreted values arrived without a breakpoint standard/version."""

    kind = "missing_breakpoint_standard"
    default_severity = "fatal"


class InterpretationGap(RowLevelError):
    """No (or more than one equally specific) breakpoint rule applies."""

    kind = "uninterpretable"


class ValidationIssue(RowLevelError):
    """A data-quality check failed for a record."""

    kind = "validation_issue"


class InterpretationDisagreement(ValidationIssue):
    """A lab-reported category disagrees with its own measurement."""

    kind = "interpretation_disagreement"


# =======================
# COMMIT / LEDGER
# =======================

class CommitFailure(AmrIngestError):
    """The persistence store failed; the whole batch was aborted."""

    def __init__(self, batch_id: str, cause: BaseException | str):
        self.batch_id = batch_id
        self.cause = cause
        super().__init__(f"Commit of batch {batch_id} failed: {cause}")


class NotAuthorized(AmrIngestError):
    """The acting user may not write to the import's target table."""

    def __init__(self, actor: str, table: str):
        self.actor = actor
        self.table = table
        super().__init__(f"Actor '{actor}' is not authorized to write to '{table}'")


class BatchNotFound(AmrIngestError):
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class InvalidTransition(AmrIngestError):
    """A ledger status change not permitted by the batch state machine."""

    def __init__(self, batch_id: str, from_status: str, to_status: str):
        self.batch_id = batch_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Batch {batch_id} cannot move from '{from_status}' to '{to_status}'"
        )


class RollbackError(AmrIngestError):
    def __init__(self, batch_id: str, message: str):
        self.batch_id = batch_id
        super().__init__(message)


class AlreadyRolledBack(RollbackError):
    def __init__(self, batch_id: str):
        super().__init__(batch_id, f"Batch {batch_id} has already been rolled back")


class BatchNotCommitted(RollbackError):
    def __init__(self, batch_id: str, status: str):
        self.status = status
        super().__init__(
            batch_id, f"Batch {batch_id} is '{status}'; only committed batches can be rolled back"
        )


class CancellationRefused(AmrIngestError):
    """Commit has already started; await completion and roll back instead."""

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id} is committing; wait for completion and issue a rollback instead"
        )


# =======================
# TEMPLATES
# =======================

class TemplateNotFound(AmrIngestError):
    def __init__(self, owner: str, name: str, version: int | None = None):
        self.owner = owner
        self.name = name
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Mapping template not found: {owner}/{name}{suffix}")


class TemplateLocked(AmrIngestError):
    """The template version is referenced by a committed batch."""

    def __init__(self, owner: str, name: str, version: int):
        self.owner = owner
        self.name = name
        self.version = version
        super().__init__(
            f"Mapping template {owner}/{name} v{version} is referenced by a committed batch"
        )
