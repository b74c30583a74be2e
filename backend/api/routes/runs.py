"""Run endpoints: inspect and cancel workflow runs."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.schemas.execution import CancelRequest, RunResponse
from app.dependencies import get_db, get_scheduler
from core.constants import Capability
from core.exceptions import NotFoundError
from core.rbac import requires
from core.security import Actor
from db.models.workflow_run import WorkflowRunModel
from workflow.engine import ExecutionScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run_response(db: AsyncSession, run_id: str) -> RunResponse:
    result = await db.execute(
        select(WorkflowRunModel)
        .where(WorkflowRunModel.id == run_id)
        .options(selectinload(WorkflowRunModel.executions))
        .execution_options(populate_existing=True)
    )
    run = result.scalar_one_or_none()
    if run is None:
        raise NotFoundError(f"Run {run_id} not found")
    return RunResponse.model_validate(run)


@router.get("/{run_id}", response_model=RunResponse, summary="Get run")
async def get_run(
    run_id: str,
    actor: Actor = Depends(requires(Capability.RUNS_READ)),
    db: AsyncSession = Depends(get_db),
) -> RunResponse:
    """Run status plus every node execution of the run."""
    return await _run_response(db, run_id)


@router.post("/{run_id}/cancel", response_model=RunResponse, summary="Cancel run")
async def cancel_run(
    run_id: str,
    request: Optional[CancelRequest] = Body(default=None),
    actor: Actor = Depends(requires(Capability.RUNS_CANCEL)),
    scheduler: ExecutionScheduler = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
) -> RunResponse:
    """
    Cancel a run that has not finished.

    Unstarted nodes are skipped and in-flight executor calls are stopped.
    Returns 409 if the run is already completed, failed or cancelled.
    """
    reason = request.reason if request else None
    await scheduler.cancel_run(run_id, actor_id=actor.id, reason=reason)
    logger.info(f"Run {run_id} cancelled by {actor.id}")
    return await _run_response(db, run_id)
