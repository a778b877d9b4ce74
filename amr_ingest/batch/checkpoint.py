"""
Checkpoints for pausing and resuming batches.

A checkpoint records, per batch, the row offset to resume reading from and
the records already processed before it. Offsets only move forward: a
paused batch resumes at its checkpoint and never re-reads rows it has
already assessed.

Two backends share one interface: an in-memory dict (tests, single
process) and a directory of JSON files (resume after restart).
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from amr_ingest.core.errors import ConfigurationError
from amr_ingest.core.models import NormalizedIsolateUnit, QualityAssessment
from amr_ingest.observability.logger import get_logger
from amr_ingest.utils.validation import validate_batch_id

logger = get_logger(__name__)


class Checkpoint(BaseModel):
    """
    Resume point of a paused batch.

    Attributes:
        batch_id: Batch the checkpoint belongs to
        offset: Row offset to resume reading from (rows before it are done)
        units: Normalized records of the rows before the offset
        assessments: Quality assessments of those records
        updated_at: When the checkpoint was written
    """

    batch_id: str
    offset: int = Field(0, ge=0)
    units: list[NormalizedIsolateUnit] = Field(default_factory=list)
    assessments: list[QualityAssessment] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CheckpointStore:
    """
    Checkpoint store keyed by batch id.

    Args:
        directory: Directory for JSON checkpoint files; None keeps
                   checkpoints in memory

    Example:
        >>> store = CheckpointStore()
        >>> store.save(Checkpoint(batch_id="batch_1", offset=100))
        >>> store.load("batch_1").offset
        100
    """

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory) if directory is not None else None
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
        self._mem: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    def save(self, checkpoint: Checkpoint) -> Checkpoint:
        """
        Store a checkpoint, replacing the previous one of the batch.

        Raises:
            ValueError: If the offset would move backward
        """
        batch_id = validate_batch_id(checkpoint.batch_id)
        with self._lock:
            previous = self._read(batch_id)
            if previous is not None and checkpoint.offset < previous.offset:
                raise ValueError(
                    f"Checkpoint of batch {batch_id} cannot move backward "
                    f"({previous.offset} -> {checkpoint.offset})"
                )
            self._write(checkpoint)
        logger.debug(f"Checkpoint {batch_id} at offset {checkpoint.offset}")
        return checkpoint

    def load(self, batch_id: str) -> Checkpoint | None:
        """The batch's checkpoint, or None when it never paused."""
        batch_id = validate_batch_id(batch_id)
        with self._lock:
            return self._read(batch_id)

    def clear(self, batch_id: str) -> None:
        """Drop the checkpoint once the batch reaches a final status."""
        batch_id = validate_batch_id(batch_id)
        with self._lock:
            self._mem.pop(batch_id, None)
            if self.directory is not None:
                self._path(batch_id).unlink(missing_ok=True)

    def batch_ids(self) -> list[str]:
        with self._lock:
            if self.directory is None:
                return sorted(self._mem)
            return sorted(path.stem for path in self.directory.glob("*.json"))

    def _path(self, batch_id: str) -> Path:
        return self.directory / f"{batch_id}.json"

    def _read(self, batch_id: str) -> Checkpoint | None:
        if self.directory is None:
            return self._mem.get(batch_id)
        path = self._path(batch_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return Checkpoint.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Corrupt checkpoint file {path}: {e}") from e

    def _write(self, checkpoint: Checkpoint) -> None:
        if self.directory is None:
            self._mem[checkpoint.batch_id] = checkpoint
            return
        path = self._path(checkpoint.batch_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(checkpoint.model_dump_json())
        tmp.replace(path)
