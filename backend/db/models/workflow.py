"""Workflow definition model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import WorkflowStatus
from db.base import BaseModel, UTCDateTime


class WorkflowDefinitionModel(BaseModel):
    """One immutable version of a notification workflow.

    Attributes:
        id: Row identifier (UUID string), unique per version
        workflow_id: Logical workflow id shared by every version
        code: Short machine name
        name: Human-readable name
        version: Monotonically increasing version number
        status: draft, published or archived
        payload_schema: Expected trigger payload shape
        published_at: When the version became triggerable
        created_by_id: Actor that published the version
    """

    __tablename__ = "workflow_definitions"
    __table_args__ = (
        UniqueConstraint("workflow_id", "version", name="uq_workflow_definitions_version"),
    )

    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    code: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        default=WorkflowStatus.PUBLISHED.value, index=True
    )
    payload_schema: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    nodes: Mapped[list["NodeTemplateModel"]] = relationship(
        "NodeTemplateModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="NodeTemplateModel.position",
        lazy="selectin",
    )
    edges: Mapped[list["WorkflowEdgeModel"]] = relationship(
        "WorkflowEdgeModel",
        back_populates="definition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
