"""Trigger, run and audit schemas."""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class TriggerRequest(BaseModel):
    """Request to start a workflow run."""

    workflow_id: str = Field(min_length=1, description="Logical workflow ID")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Trigger payload")
    idempotency_key: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Repeated triggers with the same key return the first run",
    )


class TriggerResponse(BaseModel):
    """Accepted trigger."""

    run_id: str = Field(description="Run started (or previously started) for this trigger")
    status: str = Field(description="Run status at the time of the response")
    duplicate: bool = Field(default=False, description="True if an earlier trigger used the same key")


class NodeExecutionResponse(BaseModel):
    """Per-node state within a run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    node_id: str
    node_type: str
    status: str
    attempt_count: int = 0
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error_message: Optional[str] = None


class RunResponse(BaseModel):
    """Workflow run with its node executions."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Run ID")
    workflow_id: str = Field(description="Logical workflow ID")
    definition_id: str = Field(description="Definition version row executed")
    version: int = Field(description="Definition version number")
    status: str = Field(description="created, running, paused, completed, failed or cancelled")
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    executions: List[NodeExecutionResponse] = Field(default_factory=list)


class CancelRequest(BaseModel):
    """Optional reason recorded with a cancellation."""

    reason: Optional[str] = Field(default=None, max_length=500)


class AuditEntryResponse(BaseModel):
    """One audit log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    run_id: Optional[str] = None
    node_execution_id: Optional[str] = None
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    created_at: datetime
    sequence: int


class AuditListResponse(BaseModel):
    """Audit query result in chronological order."""

    entries: List[AuditEntryResponse]
    total: int
