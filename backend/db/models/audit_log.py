"""AuditLog model: append-only record of engine state transitions."""

import threading
import time
from typing import Optional

from sqlalchemy import JSON, BigInteger, event
from sqlalchemy.orm import Mapped, mapped_column

from db.base import RecordModel

_sequence_lock = threading.Lock()
_last_sequence = 0


def next_sequence() -> int:
    """Nanosecond-based counter, strictly increasing within a process."""
    global _last_sequence
    with _sequence_lock:
        value = max(time.time_ns(), _last_sequence + 1)
        _last_sequence = value
        return value


class AuditLogEntry(RecordModel):
    """One audit log entry.

    Attributes:
        id: Unique identifier (UUID string)
        run_id: Run the event belongs to, if any
        node_execution_id: Node execution the event belongs to, if any
        event_type: AuditEventType value
        event_data: JSON details of the event
        actor_id: TriggerOperator / WorkerService / manager that caused it
        created_at: Insertion timestamp
        sequence: Tie-breaker for entries written in the same instant
    """

    __tablename__ = "audit_log_entries"

    run_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    node_execution_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(nullable=False, index=True)
    event_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    actor_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    sequence: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True, default=next_sequence
    )


@event.listens_for(AuditLogEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError("Audit log entries are immutable")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError("Audit log entries cannot be deleted")
