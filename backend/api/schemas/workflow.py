"""Workflow definition schemas."""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class NodeSpec(BaseModel):
    """One node of a definition being published."""

    code: str = Field(min_length=1, description="Unique-per-workflow machine name")
    type: str = Field(min_length=1, description="Node type (email, sms, delay)")
    name: Optional[str] = Field(default=None, description="Human-readable node name")
    template_body: Dict[str, Any] = Field(default_factory=dict, description="Render or duration spec")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Executor call budget")
    max_attempts: Optional[int] = Field(default=None, ge=1, description="Retry budget override")


class EdgeSpec(BaseModel):
    """Edge between two node codes."""

    model_config = ConfigDict(populate_by_name=True)

    from_code: str = Field(alias="from", min_length=1)
    to_code: str = Field(alias="to", min_length=1)
    condition: Optional[Dict[str, Any]] = Field(default=None, description="Match on the predecessor result")


class WorkflowPublishRequest(BaseModel):
    """Request to publish a new workflow version."""

    name: str = Field(min_length=1, description="Workflow name")
    workflow_id: Optional[str] = Field(default=None, description="Existing workflow to version; new if omitted")
    code: Optional[str] = Field(default=None, description="Short machine name")
    payload_schema: Optional[Dict[str, Any]] = Field(default=None, description="Expected trigger payload")
    nodes: List[NodeSpec] = Field(default_factory=list)
    edges: List[EdgeSpec] = Field(default_factory=list)

    def node_dicts(self) -> List[Dict[str, Any]]:
        return [n.model_dump() for n in self.nodes]

    def edge_dicts(self) -> List[Dict[str, Any]]:
        return [{"from": e.from_code, "to": e.to_code, "condition": e.condition} for e in self.edges]


class NodeTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    node_type: str
    position: int
    template_body: Dict[str, Any]
    timeout_seconds: Optional[float] = None
    max_attempts: Optional[int] = None


class EdgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[Dict[str, Any]] = None


class WorkflowVersionResponse(BaseModel):
    """Workflow definition version information."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Definition version row ID")
    workflow_id: str = Field(description="Logical workflow ID")
    code: str
    name: str
    version: int
    status: str
    payload_schema: Optional[Dict[str, Any]] = None
    published_at: Optional[datetime] = None
    created_by_id: Optional[str] = None
    is_deleted: bool = False
    nodes: List[NodeTemplateResponse] = Field(default_factory=list)
    edges: List[EdgeResponse] = Field(default_factory=list)
