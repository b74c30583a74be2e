"""Celery task running the delay sweep for worker deployments.

Each run builds its own engine and scheduler on a fresh event loop,
resumes every due delay / retry execution, then drains the successors
those completions made ready. Claims are conditional updates, so beat
firing while a previous sweep is still running does not double-execute.
"""

import asyncio
import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_sweep() -> dict:
    from app.config import get_settings
    from db.worker_session import worker_session_factory
    from notifications.providers import build_providers
    from tasks.registry import build_default_registry
    from workflow.delay_timer import DelayTimerService
    from workflow.engine import ExecutionScheduler
    from workflow.retry_manager import RetryManager

    settings = get_settings()
    email_provider, sms_provider = build_providers(settings)

    async with worker_session_factory() as session_factory:
        scheduler = ExecutionScheduler(
            session_factory=session_factory,
            registry=build_default_registry(email_provider, sms_provider, settings),
            retry_manager=RetryManager.from_settings(settings),
        )
        sweep = DelayTimerService.from_settings(scheduler, settings)
        result = await sweep.sweep_once()
        drained = await scheduler.run_until_idle()

    stats = result.to_dict()
    stats["drained"] = drained
    return stats


@celery_app.task(
    name="worker.tasks.delay_sweep.sweep_due_executions",
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    queue="sweep",
)
def sweep_due_executions(self):
    """Resume due delay and retry executions. Scheduled by beat."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        stats = loop.run_until_complete(_run_sweep())
        if stats["resumed"] or stats["requeued"] or stats["errors"]:
            logger.info("Delay sweep: %s", stats)
        return stats
    except Exception as exc:
        logger.error("Delay sweep failed: %s", exc, exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()
