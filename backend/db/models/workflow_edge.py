"""WorkflowEdge model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowEdgeModel(BaseModel):
    """Directed connection between two nodes of the same workflow.

    Attributes:
        definition_id: Owning workflow definition version
        workflow_id: Logical workflow id (must match the definition's)
        from_node_id: Predecessor node template id
        to_node_id: Successor node template id
        condition: Optional match against the predecessor's result
    """

    __tablename__ = "workflow_edges"

    definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    from_node_id: Mapped[str] = mapped_column(nullable=False, index=True)
    to_node_id: Mapped[str] = mapped_column(nullable=False, index=True)
    condition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    definition: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel", back_populates="edges", lazy="raise"
    )
