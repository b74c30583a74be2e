"""StepExecutionLog model: one row per executor attempt."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import RecordModel, UTCDateTime


class StepExecutionLogModel(RecordModel):
    """Attempt-level journal of a node execution.

    Attributes:
        run_id: Owning run
        node_execution_id: Node execution the attempt belongs to
        node_id: Node template executed
        attempt: 1-based attempt number
        idempotency_key: Key sent to the delivery provider
        started_at / finished_at: Attempt timing
        success: Whether the executor returned a result
        input_context: Rendered input (recipient, subject)
        output: Executor result on success
        provider_message_id: Delivery provider's message id
        error_message: Error detail on failure
        error_kind: transient or permanent
    """

    __tablename__ = "step_execution_logs"

    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_execution_id: Mapped[str] = mapped_column(
        ForeignKey("node_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_id: Mapped[str] = mapped_column(nullable=False)
    attempt: Mapped[int] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    success: Mapped[bool] = mapped_column(default=False, index=True)
    input_context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(nullable=True)
