"""FastAPI dependency injection functions."""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AsyncSessionLocal
from services.audit_service import AuditLogWriter
from services.trigger_service import TriggerIngestionService
from workflow.engine import ExecutionScheduler, get_execution_scheduler

logger = logging.getLogger(__name__)


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise


def get_scheduler() -> ExecutionScheduler:
    """The process-wide execution scheduler."""
    return get_execution_scheduler()


def get_audit_writer() -> AuditLogWriter:
    return get_execution_scheduler().audit


def get_trigger_service() -> TriggerIngestionService:
    scheduler = get_execution_scheduler()
    return TriggerIngestionService(scheduler.session_factory, scheduler)
