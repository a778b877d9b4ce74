"""
Batch orchestration: pipeline, commit/rollback, checkpoints and export.
"""

from .checkpoint import Checkpoint, CheckpointStore
from .committer import BatchCommitter, committable_units
from .export import LongFormatExporter
from .notifications import (
    BatchEvent,
    CollectingNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
)
from .pipeline import ImportPipeline, PipelineControl, new_batch_id

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "BatchCommitter",
    "committable_units",
    "LongFormatExporter",
    "BatchEvent",
    "NotificationSink",
    "LoggingNotificationSink",
    "CollectingNotificationSink",
    "ImportPipeline",
    "PipelineControl",
    "new_batch_id",
]
