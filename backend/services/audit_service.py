"""Audit log writer and query service.

Entries are added to the caller's session, so an audit row commits or rolls
back together with the state change it describes. Nothing in the engine
reads the audit log to make decisions.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AuditEventType
from core.utils import utc_now
from db.models.audit_log import AuditLogEntry

MAX_QUERY_LIMIT = 1000


class AuditLogWriter:
    """Append-only writer for AuditLogEntry rows."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def record(
        self,
        session: AsyncSession,
        event_type: AuditEventType,
        run_id: Optional[str] = None,
        node_execution_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        **event_data: Any,
    ) -> AuditLogEntry:
        """Stage one entry in ``session``; it is written on the caller's commit."""
        entry = AuditLogEntry(
            run_id=run_id,
            node_execution_id=node_execution_id,
            event_type=AuditEventType(event_type).value,
            event_data=event_data,
            actor_id=actor_id,
            created_at=self.clock(),
        )
        session.add(entry)
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        run_id: Optional[str] = None,
        event_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> Sequence[AuditLogEntry]:
        """Entries matching the filters, oldest first, in insertion order."""
        query = select(AuditLogEntry)
        if run_id:
            query = query.where(AuditLogEntry.run_id == run_id)
        if event_type:
            query = query.where(AuditLogEntry.event_type == event_type)
        if since:
            query = query.where(AuditLogEntry.created_at >= since)
        if until:
            query = query.where(AuditLogEntry.created_at <= until)

        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        query = query.order_by(
            AuditLogEntry.created_at.asc(),
            AuditLogEntry.sequence.asc(),
        ).limit(limit)

        result = await session.execute(query)
        return result.scalars().all()
