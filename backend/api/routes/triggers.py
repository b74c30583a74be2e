"""Trigger endpoint: start a workflow run from an external event."""

import logging

from fastapi import APIRouter, Depends, status as http_status

from api.schemas.execution import TriggerRequest, TriggerResponse
from app.dependencies import get_trigger_service
from core.constants import Capability
from core.rbac import requires
from core.security import Actor
from services.trigger_service import TriggerIngestionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=TriggerResponse,
    status_code=http_status.HTTP_202_ACCEPTED,
    summary="Trigger a workflow run",
)
async def fire_trigger(
    request: TriggerRequest,
    actor: Actor = Depends(requires(Capability.TRIGGER_EXECUTE)),
    service: TriggerIngestionService = Depends(get_trigger_service),
) -> TriggerResponse:
    """
    Start a run of the latest published version of a workflow.

    The run proceeds asynchronously; poll ``GET /runs/{run_id}`` for its
    progress. A repeated ``idempotency_key`` returns the original run with
    ``duplicate=true``.
    """
    result = await service.ingest(
        actor,
        request.workflow_id,
        request.payload,
        idempotency_key=request.idempotency_key,
    )
    return TriggerResponse(run_id=result.run_id, status=result.status, duplicate=result.duplicate)
