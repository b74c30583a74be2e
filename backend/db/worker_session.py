"""Worker-safe session factory for Celery tasks.

Creates a fresh async engine per task run to avoid the 'Future attached
to a different loop' error when pooled connections are shared across
the event loops Celery tasks create.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.database import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Provide a session factory bound to an engine owned by this task.

    Usage:
        async with worker_session_factory() as factory:
            scheduler = ExecutionScheduler(session_factory=factory, ...)
    """
    engine = create_db_engine()
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
