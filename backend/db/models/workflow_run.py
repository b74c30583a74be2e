"""WorkflowRun model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RunStatus
from db.base import RecordModel, UTCDateTime


class WorkflowRunModel(RecordModel):
    """One execution instance of a workflow definition for a given trigger.

    Attributes:
        workflow_id: Logical workflow id
        definition_id: Exact definition version row executed
        version: Definition version number
        trigger_payload: Payload supplied by the TriggerOperator
        status: created, running, paused, completed, failed or cancelled
        actor_id: TriggerOperator that started the run
        idempotency_key: Caller-supplied dedup key (unique per workflow)
        error_message: Cause of failure for failed runs
        started_at / completed_at: Run timing
    """

    __tablename__ = "workflow_runs"
    __table_args__ = (
        UniqueConstraint("workflow_id", "idempotency_key", name="uq_workflow_runs_idempotency"),
    )

    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(nullable=False)
    trigger_payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(default=RunStatus.CREATED.value, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    executions: Mapped[list["NodeExecutionModel"]] = relationship(
        "NodeExecutionModel",
        back_populates="run",
        order_by="[NodeExecutionModel.created_at, NodeExecutionModel.id]",
        lazy="raise",
    )
