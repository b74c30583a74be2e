"""NodeExecution model."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import NodeExecutionStatus
from db.base import RecordModel, UTCDateTime


class NodeExecutionModel(RecordModel):
    """Per-node, per-run record of attempts, result and status.

    Attributes:
        run_id: Owning run
        node_id: Node template executed
        node_type: Copied from the template for sweep queries
        status: pending, scheduled, running, succeeded, failed or skipped
        attempt_count: Number of executor attempts made so far
        scheduled_at: When the execution becomes due (delay end or retry backoff)
        started_at / completed_at: Timing of the latest attempt / terminal state
        result: Opaque JSON returned by the executor
        error_message: Last error detail
        idempotency_key: Stable key passed to delivery providers
        claimed_by / claimed_at: Worker currently holding the execution
    """

    __tablename__ = "node_executions"
    __table_args__ = (
        UniqueConstraint("run_id", "node_id", name="uq_node_executions_run_node"),
    )

    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_id: Mapped[str] = mapped_column(nullable=False, index=True)
    node_type: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        default=NodeExecutionStatus.PENDING.value, index=True
    )
    attempt_count: Mapped[int] = mapped_column(default=0)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    result: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(nullable=False, index=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    run: Mapped["WorkflowRunModel"] = relationship(
        "WorkflowRunModel", back_populates="executions", lazy="raise"
    )
