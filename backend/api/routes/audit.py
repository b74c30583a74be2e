"""Audit Log API routes.

Read-only access to the engine's audit trail, oldest entry first.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.execution import AuditEntryResponse, AuditListResponse
from app.dependencies import get_audit_writer, get_db
from core.constants import AuditEventType, Capability
from core.exceptions import ValidationError
from core.rbac import requires
from core.security import Actor
from services.audit_service import MAX_QUERY_LIMIT, AuditLogWriter

router = APIRouter()


@router.get("", response_model=AuditListResponse)
async def list_audit_entries(
    run_id: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None, description="ISO timestamp: 2026-01-01T00:00:00Z"),
    until: Optional[datetime] = Query(None, description="ISO timestamp: 2026-12-31T23:59:59Z"),
    limit: int = Query(100, ge=1, le=MAX_QUERY_LIMIT),
    actor: Actor = Depends(requires(Capability.AUDIT_READ)),
    audit: AuditLogWriter = Depends(get_audit_writer),
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    """List audit entries filtered by run, event type and time range."""
    if event_type is not None:
        try:
            event_type = AuditEventType(event_type).value
        except ValueError:
            raise ValidationError(f"Unknown event type '{event_type}'")

    entries = await audit.list_entries(
        db,
        run_id=run_id,
        event_type=event_type,
        since=since,
        until=until,
        limit=limit,
    )
    return AuditListResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        total=len(entries),
    )
