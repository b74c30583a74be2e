"""NodeTemplate model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class NodeTemplateModel(BaseModel):
    """A typed unit of work inside a workflow definition.

    Attributes:
        definition_id: Owning workflow definition version
        code: Unique-per-workflow machine name, used in template paths
        name: Human-readable name
        node_type: email, sms or delay
        position: Ordering within the definition
        template_body: Render spec (email/sms) or duration spec (delay)
        timeout_seconds: Optional executor call budget override
        max_attempts: Optional retry budget override
    """

    __tablename__ = "node_templates"

    definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(nullable=False, default="")
    node_type: Mapped[str] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(default=0)
    template_body: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timeout_seconds: Mapped[Optional[float]] = mapped_column(nullable=True)
    max_attempts: Mapped[Optional[int]] = mapped_column(nullable=True)

    definition: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel", back_populates="nodes", lazy="raise"
    )
