"""
Delay Timer Service.

Durable replacement for in-memory timers. Delay nodes and retry backoffs
are stored as ``scheduled`` node executions with a ``scheduled_at`` in the
future; this service periodically sweeps the ones that are due and hands
them to the scheduler, which claims each with a conditional update so a
row is executed by exactly one claimer.

The sweep also recovers crashed work: an execution left ``running`` with a
claim older than the stale threshold is put back to ``scheduled``.

Nothing is kept in memory between sweeps, so after a restart the first
sweep rediscovers every pending delay.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import select

from core.constants import NodeExecutionStatus
from db.models.node_execution import NodeExecutionModel

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """What one sweep did."""

    resumed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "resumed": len(self.resumed),
            "skipped": len(self.skipped),
            "requeued": len(self.requeued),
            "errors": self.errors,
        }


class DelayTimerService:
    """Periodic sweep of due delay / retry executions."""

    def __init__(
        self,
        scheduler,
        interval_seconds: float = 5.0,
        batch_size: int = 100,
        stale_after_seconds: float = 600,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.scheduler = scheduler
        self.session_factory = scheduler.session_factory
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.clock = clock or scheduler.clock
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, scheduler, settings) -> "DelayTimerService":
        return cls(
            scheduler,
            interval_seconds=settings.DELAY_SWEEP_INTERVAL_SECONDS,
            batch_size=settings.DELAY_SWEEP_BATCH_SIZE,
            stale_after_seconds=settings.STALE_CLAIM_SECONDS,
        )

    # ─── Queries ───────────────────────────────────────────

    async def due_executions(self, now: datetime) -> list[str]:
        """Ids of scheduled executions whose time has come, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(NodeExecutionModel.id)
                .where(
                    NodeExecutionModel.status == NodeExecutionStatus.SCHEDULED.value,
                    NodeExecutionModel.scheduled_at <= now,
                )
                .order_by(NodeExecutionModel.scheduled_at.asc())
                .limit(self.batch_size)
            )
            return list(result.scalars().all())

    async def stale_claims(self, now: datetime) -> list[str]:
        """Ids of running executions whose claim is older than the threshold."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(NodeExecutionModel.id)
                .where(
                    NodeExecutionModel.status == NodeExecutionStatus.RUNNING.value,
                    NodeExecutionModel.claimed_at <= now - self.stale_after,
                )
                .order_by(NodeExecutionModel.claimed_at.asc())
                .limit(self.batch_size)
            )
            return list(result.scalars().all())

    # ─── Sweep ─────────────────────────────────────────────

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepResult:
        """Recover stale claims, then resume every due execution.

        Each execution is claimed by the scheduler with a conditional update;
        one that another worker claimed first is reported as skipped.
        """
        now = now or self.clock()
        result = SweepResult()

        for execution_id in await self.stale_claims(now):
            try:
                if await self.scheduler.recover_stale_claim(execution_id, now - self.stale_after):
                    result.requeued.append(execution_id)
            except Exception:
                result.errors += 1
                logger.exception("Stale claim recovery failed", execution_id=execution_id)

        for execution_id in await self.due_executions(now):
            try:
                status = await self.scheduler.resume_execution(execution_id)
            except Exception:
                result.errors += 1
                logger.exception("Resuming execution failed", execution_id=execution_id)
                continue
            if status is None:
                result.skipped.append(execution_id)
            else:
                result.resumed.append(execution_id)

        if result.resumed or result.requeued or result.errors:
            logger.info("Delay sweep finished", **result.to_dict())
        return result

    # ─── Periodic loop ─────────────────────────────────────

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="delay-sweep")
            logger.info("Delay sweep started", interval=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Delay sweep stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delay sweep failed")
            await asyncio.sleep(self.interval_seconds)
