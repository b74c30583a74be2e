"""Workflow definition endpoints: publish, list versions, get, soft-delete."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.workflow import WorkflowPublishRequest, WorkflowVersionResponse
from app.dependencies import get_audit_writer, get_db
from core.constants import Capability
from core.rbac import requires
from core.security import Actor
from services.audit_service import AuditLogWriter
from services.definition_store import DefinitionStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


@router.post("", response_model=WorkflowVersionResponse, status_code=status.HTTP_201_CREATED)
async def publish_workflow(
    request: WorkflowPublishRequest,
    actor: Actor = Depends(requires(Capability.WORKFLOWS_MANAGE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
) -> WorkflowVersionResponse:
    """
    Publish a workflow version.

    Omitting ``workflow_id`` creates a new workflow at version 1; otherwise
    the next version of that workflow is created. The graph is validated
    before anything is stored.
    """
    store = DefinitionStore(db, audit)
    model = await store.publish(
        actor,
        name=request.name,
        nodes=request.node_dicts(),
        edges=request.edge_dicts(),
        workflow_id=request.workflow_id,
        code=request.code,
        payload_schema=request.payload_schema,
    )
    return WorkflowVersionResponse.model_validate(model)


@router.get("/{workflow_id}/versions", response_model=List[WorkflowVersionResponse])
async def list_versions(
    workflow_id: str,
    include_deleted: bool = Query(False),
    actor: Actor = Depends(requires(Capability.WORKFLOWS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> List[WorkflowVersionResponse]:
    """Every version of a workflow, oldest first."""
    store = DefinitionStore(db)
    versions = await store.list_versions(workflow_id, include_deleted=include_deleted)
    return [WorkflowVersionResponse.model_validate(v) for v in versions]


@router.get("/{workflow_id}/versions/{version}", response_model=WorkflowVersionResponse)
async def get_version(
    workflow_id: str,
    version: int,
    actor: Actor = Depends(requires(Capability.WORKFLOWS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> WorkflowVersionResponse:
    store = DefinitionStore(db)
    model = await store.get_model(workflow_id, version)
    return WorkflowVersionResponse.model_validate(model)


@router.delete("/{workflow_id}/versions/{version}", response_model=WorkflowVersionResponse)
async def delete_version(
    workflow_id: str,
    version: int,
    actor: Actor = Depends(requires(Capability.WORKFLOWS_MANAGE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditLogWriter = Depends(get_audit_writer),
) -> WorkflowVersionResponse:
    """Soft-delete a version. Runs already pinned to it keep executing."""
    store = DefinitionStore(db, audit)
    model = await store.soft_delete_version(actor, workflow_id, version)
    logger.info(f"Workflow {workflow_id} version {version} deleted by {actor.id}")
    return WorkflowVersionResponse.model_validate(model)
