"""Retry and idempotency management around executor calls.

- Idempotency key: SHA-256 of ``run_id:node_id:version``, stable across
  retries, resends and crash recovery.
- Every call is bounded by a per-node-type timeout; a timeout is transient.
- Before an email/sms executor is invoked the step log is consulted: if an
  earlier attempt with the same key succeeded, its recorded result is
  returned and the provider is not called again.
- Every attempt is journaled as a StepExecutionLog row.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ErrorKind, NodeType
from core.exceptions import ExecutionError, PermanentExecutionError, TransientExecutionError
from core.utils import stable_hash, utc_now
from db.models.step_execution_log import StepExecutionLogModel
from tasks.base_task import ExecutionContext, NodeExecutor, NodeResult
from workflow.definition import NodeTemplate
from workflow.retry_strategies import RetryStrategy

logger = structlog.get_logger(__name__)

SIDE_EFFECT_NODE_TYPES = frozenset({NodeType.EMAIL.value, NodeType.SMS.value})


def idempotency_key(run_id: str, node_id: str, version: int) -> str:
    """Stable key identifying one node of one run of one definition version."""
    return stable_hash(run_id, node_id, version)


@dataclass
class AttemptOutcome:
    """What happened during one executor attempt."""

    attempt: int
    started_at: datetime
    finished_at: datetime
    result: Optional[NodeResult] = None
    error: Optional[ExecutionError] = None
    cancelled: bool = False
    replayed: bool = False
    input_context: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.result is not None and self.error is None and not self.cancelled

    @property
    def error_kind(self) -> Optional[str]:
        if self.error is None:
            return None
        return ErrorKind.TRANSIENT.value if self.error.transient else ErrorKind.PERMANENT.value


@dataclass
class RetryDecision:
    """How the scheduler should react to a failed attempt."""

    retry: bool
    delay_seconds: float = 0.0
    exhausted: bool = False

    def next_run_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.delay_seconds)


class RetryManager:
    """Wraps executor calls with timeouts, step logging and retry decisions."""

    def __init__(
        self,
        strategy: RetryStrategy,
        timeouts: Optional[dict[str, float]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.strategy = strategy
        self.timeouts = timeouts or {}
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utc_now) -> "RetryManager":
        return cls(
            strategy=RetryStrategy.from_settings(settings),
            timeouts={
                NodeType.EMAIL.value: settings.EMAIL_TIMEOUT_SECONDS,
                NodeType.SMS.value: settings.SMS_TIMEOUT_SECONDS,
            },
            clock=clock,
        )

    def timeout_for(self, node: NodeTemplate) -> Optional[float]:
        if node.timeout_seconds:
            return float(node.timeout_seconds)
        return self.timeouts.get(node.type)

    def strategy_for(self, node: NodeTemplate) -> RetryStrategy:
        return self.strategy.with_max_attempts(node.max_attempts)

    # ─── Step log ──────────────────────────────────────────

    async def find_prior_success(
        self,
        session: AsyncSession,
        key: str,
    ) -> Optional[StepExecutionLogModel]:
        """Latest successful attempt recorded under ``key``, if any."""
        result = await session.execute(
            select(StepExecutionLogModel)
            .where(
                StepExecutionLogModel.idempotency_key == key,
                StepExecutionLogModel.success.is_(True),
            )
            .order_by(StepExecutionLogModel.finished_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def record_attempt(
        self,
        session: AsyncSession,
        execution,
        outcome: AttemptOutcome,
    ) -> StepExecutionLogModel:
        """Stage the StepExecutionLog row for one attempt."""
        result = outcome.result
        if outcome.cancelled:
            error_message = "Cancelled while in flight"
        else:
            error_message = outcome.error.message if outcome.error else None
        entry = StepExecutionLogModel(
            run_id=execution.run_id,
            node_execution_id=execution.id,
            node_id=execution.node_id,
            attempt=outcome.attempt,
            idempotency_key=execution.idempotency_key,
            started_at=outcome.started_at,
            finished_at=outcome.finished_at,
            success=outcome.success,
            input_context=outcome.input_context or (result.input_context if result else None),
            output=result.to_dict() if result else None,
            provider_message_id=result.provider_message_id if result else None,
            error_message=error_message,
            error_kind=outcome.error_kind,
        )
        session.add(entry)
        return entry

    # ─── Invocation ────────────────────────────────────────

    async def invoke(
        self,
        executor: NodeExecutor,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
        prior_success: Optional[StepExecutionLogModel] = None,
    ) -> AttemptOutcome:
        """Run one attempt and capture the outcome; never raises ExecutionError."""
        started_at = self.clock()
        log = logger.bind(run_id=context.run.run_id, node_id=node.id, attempt=attempt)

        if prior_success is not None and node.type in SIDE_EFFECT_NODE_TYPES:
            log.info("Replaying recorded result, provider not called", key=context.idempotency_key[:12])
            return AttemptOutcome(
                attempt=attempt,
                started_at=started_at,
                finished_at=self.clock(),
                result=NodeResult(
                    output=dict(prior_success.output or {}),
                    provider_message_id=prior_success.provider_message_id,
                    input_context=dict(prior_success.input_context or {}),
                ),
                replayed=True,
            )

        timeout = self.timeout_for(node)
        error: Optional[ExecutionError] = None
        result: Optional[NodeResult] = None
        try:
            if timeout:
                result = await asyncio.wait_for(executor.run(node, context, attempt), timeout=timeout)
            else:
                result = await executor.run(node, context, attempt)
        except asyncio.TimeoutError:
            error = TransientExecutionError(
                f"Executor timed out after {timeout}s",
                {"timeout_seconds": timeout},
            )
            log.warning("Executor timed out", timeout=timeout)
        except ExecutionError as e:
            error = e
        except Exception as e:
            log.exception("Unexpected executor error")
            error = PermanentExecutionError(f"Unexpected executor error: {e}")

        return AttemptOutcome(
            attempt=attempt,
            started_at=started_at,
            finished_at=self.clock(),
            result=result,
            error=error,
        )

    # ─── Retry decision ────────────────────────────────────

    def decide(self, node: NodeTemplate, attempt_count: int, error: ExecutionError) -> RetryDecision:
        """Retry a transient error while attempts remain; otherwise fail."""
        strategy = self.strategy_for(node)
        if not error.transient:
            return RetryDecision(retry=False)
        if strategy.should_retry(attempt_count, error):
            return RetryDecision(retry=True, delay_seconds=strategy.compute_delay(attempt_count))
        return RetryDecision(retry=False, exhausted=True)
