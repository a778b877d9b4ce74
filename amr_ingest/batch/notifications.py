"""
Notification sinks for batch lifecycle events.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from amr_ingest.observability.logger import get_logger

logger = get_logger(__name__)

EventType = Literal["completed", "failed", "cancelled", "paused", "rolled-back"]


class BatchEvent(BaseModel):
    """
    A batch lifecycle event sent to the host platform.

    Attributes:
        event_type: completed, failed, cancelled, paused or rolled-back
        batch_id: Batch the event concerns
        status: Ledger status after the event
        actor: Acting user
        counts: Batch counters at the time of the event
        error: Failure cause, if any
        occurred_at: When the event happened
    """

    event_type: EventType
    batch_id: str
    status: str
    actor: str | None = None
    counts: dict[str, int] = Field(default_factory=dict)
    error: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, event: BatchEvent) -> None:
        ...


class LoggingNotificationSink:
    """Writes every event to the structured log."""

    def notify(self, event: BatchEvent) -> None:
        payload: dict[str, Any] = event.model_dump(mode="json")
        if event.event_type == "failed":
            logger.warning(f"Batch {event.batch_id} failed: {event.error}", extra=payload)
        else:
            logger.info(f"Batch {event.batch_id} {event.event_type}", extra=payload)


class CollectingNotificationSink:
    """Keeps events in memory (tests, embedding hosts that poll)."""

    def __init__(self):
        self.events: list[BatchEvent] = []
        self._lock = threading.Lock()

    def notify(self, event: BatchEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> list[BatchEvent]:
        with self._lock:
            return [event for event in self.events if event.event_type == event_type]
