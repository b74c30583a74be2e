"""
Execution Scheduler: turns a triggered run into ordered node executions.

The scheduler owns the WorkflowRun and NodeExecution lifecycle. Nothing is
held only in memory: every dispatch, claim, retry and completion is a row
change, so a restarted process (or the delay sweep) can pick up any run.

Flow of one node execution:

    pending ──dispatch──▶ scheduled ──claim──▶ running ──▶ succeeded | failed
                              ▲                    │
                              └──── retry backoff ─┘

- Non-delay nodes are scheduled with ``scheduled_at = now`` and pushed on
  the in-process ready queue.
- Delay nodes are scheduled with ``scheduled_at = now + duration`` and are
  only picked up by the delay sweep.
- Claiming is a conditional ``UPDATE ... WHERE status = 'scheduled'`` so a
  queued worker and the sweep never run the same execution twice.
- Every state change of a run happens under an asyncio lock keyed by run
  id and inside one transaction that locks the run row. Executor calls run
  outside both, so sibling nodes of one run execute concurrently.

Architecture:
- asyncio.Queue of node execution ids consumed by a pool of worker tasks
- per-run asyncio.Lock (weakly held) + ``SELECT ... FOR UPDATE`` on the run
- in-flight executor calls tracked per run so cancellation can stop them
"""

import asyncio
import os
import socket
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Optional
from uuid import uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import (
    TERMINAL_RUN_STATUSES,
    ActorRole,
    AuditEventType,
    Capability,
    NodeExecutionStatus,
    NodeType,
    RunStatus,
)
from core.exceptions import (
    ExecutionError,
    NotFoundError,
    TransientExecutionError,
    ValidationError,
)
from core.logging_config import bind_run_context, clear_run_context
from core.rbac import require_capability
from core.security import Actor
from core.utils import utc_now
from db.models.node_execution import NodeExecutionModel
from db.models.step_execution_log import StepExecutionLogModel
from db.models.workflow import WorkflowDefinitionModel
from db.models.workflow_run import WorkflowRunModel
from services.audit_service import AuditLogWriter
from tasks.base_task import ExecutionContext
from tasks.implementations.delay_task import parse_delay
from tasks.registry import ExecutorRegistry
from workflow.definition import NodeTemplate, RunContext, WorkflowDefinition
from workflow.graph_validator import ensure_valid
from workflow.readiness import Readiness, evaluate_readiness
from workflow.retry_manager import (
    SIDE_EFFECT_NODE_TYPES,
    AttemptOutcome,
    RetryManager,
    idempotency_key,
)
from workflow.state_machine import transition_node, transition_run

logger = structlog.get_logger(__name__)

S = NodeExecutionStatus

RUN_EVENTS = {
    RunStatus.RUNNING: AuditEventType.RUN_RUNNING,
    RunStatus.PAUSED: AuditEventType.RUN_PAUSED,
    RunStatus.COMPLETED: AuditEventType.RUN_COMPLETED,
    RunStatus.FAILED: AuditEventType.RUN_FAILED,
    RunStatus.CANCELLED: AuditEventType.RUN_CANCELLED,
}


@dataclass
class Claim:
    """A node execution this worker holds in ``running``."""

    execution_id: str
    run_id: str
    node: NodeTemplate
    attempt: int
    idempotency_key: str
    scheduled_at: Optional[datetime]
    run_context: RunContext
    prior_success: Optional[StepExecutionLogModel] = None


class ExecutionScheduler:
    """Run state machine plus the worker pool that executes nodes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ExecutorRegistry,
        retry_manager: RetryManager,
        audit: Optional[AuditLogWriter] = None,
        clock: Callable[[], datetime] = utc_now,
        pool_size: int = 8,
        worker_id: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.retry_manager = retry_manager
        self.clock = clock
        self.audit = audit or AuditLogWriter(clock=clock)
        self.pool_size = pool_size
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:6]}"
        self.actor = Actor(id=self.worker_id, roles=[ActorRole.WORKER_SERVICE.value])
        require_capability(self.actor, Capability.NODES_EXECUTE)

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._run_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._inflight: dict[str, dict[str, asyncio.Task]] = {}
        self._definitions: dict[str, WorkflowDefinition] = {}

    # ─── Worker pool ───────────────────────────────────────

    async def start(self) -> None:
        """Spawn the worker tasks consuming the ready queue."""
        if self._workers:
            return
        for i in range(self.pool_size):
            self._workers.append(asyncio.create_task(self._worker_loop(i), name=f"node-worker-{i}"))
        logger.info("Worker pool started", size=self.pool_size, worker_id=self.worker_id)

    async def stop(self) -> None:
        """Cancel the worker tasks; claimed work is recovered by the sweep."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Worker pool stopped", worker_id=self.worker_id)

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    async def _worker_loop(self, index: int) -> None:
        while True:
            execution_id = await self._queue.get()
            try:
                await self.execute_node(execution_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                # The execution stays claimed; stale-claim recovery re-queues it.
                logger.exception("Node execution crashed", execution_id=execution_id, worker=index)
            finally:
                self._queue.task_done()
                clear_run_context()

    def enqueue(self, execution_ids: Iterable[str]) -> None:
        for execution_id in execution_ids:
            self._queue.put_nowait(execution_id)

    async def run_until_idle(self) -> int:
        """Process queued executions inline until the queue is empty.

        Used by tests and one-shot tools instead of the worker pool.
        Returns the number of queue items processed.
        """
        processed = 0
        while True:
            try:
                execution_id = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                await self.execute_node(execution_id)
            finally:
                self._queue.task_done()
            processed += 1
        return processed

    # ─── Transactions ──────────────────────────────────────

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._run_locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._run_locks[run_id] = lock
        return lock

    @asynccontextmanager
    async def locked_run(self, run_id: str) -> AsyncIterator[tuple[AsyncSession, WorkflowRunModel]]:
        """Per-run lock plus one transaction holding the run row."""
        lock = self._lock_for(run_id)
        async with lock:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(WorkflowRunModel)
                        .where(WorkflowRunModel.id == run_id)
                        .with_for_update()
                    )
                    run = result.scalar_one_or_none()
                    if run is None:
                        raise NotFoundError(f"Run {run_id} not found")
                    yield session, run

    async def _load_executions(self, session: AsyncSession, run_id: str) -> dict[str, NodeExecutionModel]:
        result = await session.execute(
            select(NodeExecutionModel).where(NodeExecutionModel.run_id == run_id)
        )
        return {e.node_id: e for e in result.scalars().all()}

    async def get_definition(self, session: AsyncSession, definition_id: str) -> WorkflowDefinition:
        """Definition pinned by a run. Versions are immutable, so they are cached."""
        cached = self._definitions.get(definition_id)
        if cached is not None:
            return cached
        model = await session.get(WorkflowDefinitionModel, definition_id)
        if model is None:
            raise NotFoundError(f"Workflow definition {definition_id} not found")
        definition = WorkflowDefinition.from_model(model, include_deleted=True)
        self._definitions[definition_id] = definition
        return definition

    # ─── Transitions ───────────────────────────────────────

    def _transition_run(
        self,
        session: AsyncSession,
        run: WorkflowRunModel,
        target: RunStatus,
        actor_id: Optional[str] = None,
        **data: Any,
    ) -> None:
        previous = transition_run(run, target)
        now = self.clock()
        if target == RunStatus.RUNNING and run.started_at is None:
            run.started_at = now
        if target in TERMINAL_RUN_STATUSES:
            run.completed_at = now

        if target == RunStatus.RUNNING and previous == RunStatus.PAUSED.value:
            event_type = AuditEventType.RUN_RESUMED
        else:
            event_type = RUN_EVENTS[target]
        self.audit.record(
            session,
            event_type,
            run_id=run.id,
            actor_id=actor_id or self.worker_id,
            from_status=previous,
            to_status=run.status,
            **data,
        )
        logger.info("Run status changed", run_id=run.id, from_status=previous, to_status=run.status)

    def _transition_node(
        self,
        session: AsyncSession,
        run: WorkflowRunModel,
        execution: NodeExecutionModel,
        target: NodeExecutionStatus,
        actor_id: Optional[str] = None,
        **data: Any,
    ) -> None:
        previous = transition_node(execution, target)
        self.audit.record(
            session,
            AuditEventType.NODE_STATUS_CHANGED,
            run_id=run.id,
            node_execution_id=execution.id,
            actor_id=actor_id or self.worker_id,
            node_id=execution.node_id,
            from_status=previous,
            to_status=execution.status,
            attempt=execution.attempt_count,
            **data,
        )

    # ─── Run creation ──────────────────────────────────────

    async def create_run(
        self,
        session: AsyncSession,
        definition: WorkflowDefinition,
        payload: dict,
        actor_id: Optional[str] = None,
        idempotency_key_value: Optional[str] = None,
    ) -> tuple[WorkflowRunModel, list[str]]:
        """Create a run inside the caller's transaction and dispatch its entry node.

        Returns the run and the execution ids to enqueue once the caller
        has committed (see ``enqueue``).

        Raises:
            GraphError: the definition is not a valid DAG; nothing is written
            IntegrityError: on flush, if the idempotency key is already used
        """
        validation = ensure_valid(definition)
        now = self.clock()

        run = WorkflowRunModel(
            id=str(uuid4()),
            workflow_id=definition.workflow_id,
            definition_id=definition.id,
            version=definition.version,
            trigger_payload=payload or {},
            status=RunStatus.CREATED.value,
            actor_id=actor_id,
            idempotency_key=idempotency_key_value,
            created_at=now,
        )
        session.add(run)

        executions: dict[str, NodeExecutionModel] = {}
        for node in definition.nodes:
            execution = NodeExecutionModel(
                id=str(uuid4()),
                run_id=run.id,
                node_id=node.id,
                node_type=node.type,
                status=S.PENDING.value,
                attempt_count=0,
                idempotency_key=idempotency_key(run.id, node.id, definition.version),
                created_at=now,
            )
            session.add(execution)
            executions[node.id] = execution

        await session.flush()

        self.audit.record(
            session,
            AuditEventType.RUN_CREATED,
            run_id=run.id,
            actor_id=actor_id,
            workflow_id=definition.workflow_id,
            version=definition.version,
            idempotency_key=idempotency_key_value,
        )
        self._transition_run(session, run, RunStatus.RUNNING, actor_id=actor_id)

        to_enqueue: list[str] = []
        self._dispatch(session, run, definition, executions[validation.entry_node_id], now, to_enqueue)
        self._refresh_run_status(session, run, executions)

        self._definitions[definition.id] = definition
        logger.info(
            "Run created",
            run_id=run.id,
            workflow_id=definition.workflow_id,
            version=definition.version,
        )
        return run, to_enqueue

    # ─── Dispatch & successor evaluation ──────────────────

    def _dispatch(
        self,
        session: AsyncSession,
        run: WorkflowRunModel,
        definition: WorkflowDefinition,
        execution: NodeExecutionModel,
        now: datetime,
        to_enqueue: list[str],
    ) -> None:
        node = definition.node(execution.node_id)
        due = now
        if node.type == NodeType.DELAY.value:
            try:
                due = now + parse_delay(node.template_body)
            except ValidationError as e:
                # Scheduled immediately; the delay executor fails it permanently.
                logger.warning("Invalid delay on node", run_id=run.id, node_id=node.id, error=e.message)

        execution.scheduled_at = due
        execution.claimed_by = None
        execution.claimed_at = None
        self._transition_node(session, run, execution, S.SCHEDULED, scheduled_at=due.isoformat())

        if node.type != NodeType.DELAY.value or due <= now:
            to_enqueue.append(execution.id)

    def _advance(
        self,
        session: AsyncSession,
        run: WorkflowRunModel,
        definition: WorkflowDefinition,
        executions: dict[str, NodeExecutionModel],
        node_id: str,
        now: datetime,
        to_enqueue: list[str],
    ) -> None:
        """Re-evaluate the successors of a finished node, cascading skips."""
        frontier = list(definition.successors(node_id))
        while frontier:
            successor_id = frontier.pop(0)
            execution = executions.get(successor_id)
            if execution is None or execution.status != S.PENDING.value:
                continue

            readiness = evaluate_readiness(definition, successor_id, executions)
            if readiness == Readiness.READY:
                self._dispatch(session, run, definition, execution, now, to_enqueue)
            elif readiness == Readiness.SKIP:
                execution.completed_at = now
                self._transition_node(session, run, execution, S.SKIPPED, reason="unreachable")
                frontier.extend(definition.successors(successor_id))

    def _refresh_run_status(
        self,
        session: AsyncSession,
        run: WorkflowRunModel,
        executions: dict[str, NodeExecutionModel],
    ) -> None:
        """Pause, resume or finish the run based on outstanding work."""
        if RunStatus(run.status) in TERMINAL_RUN_STATUSES:
            return

        outstanding = [
            e for e in executions.values()
            if e.status in (S.SCHEDULED.value, S.RUNNING.value)
        ]

        if not outstanding:
            now = self.clock()
            for execution in executions.values():
                if execution.status == S.PENDING.value:
                    execution.completed_at = now
                    self._transition_node(session, run, execution, S.SKIPPED, reason="unreachable")

            failed = [e for e in executions.values() if e.status == S.FAILED.value]
            if failed:
                run.error_message = "; ".join(
                    f"{e.node_id}: {e.error_message}" for e in failed
                )[:2000]
                self._transition_run(
                    session, run, RunStatus.FAILED,
                    failed_node_ids=[e.node_id for e in failed],
                )
            else:
                self._transition_run(session, run, RunStatus.COMPLETED)
            return

        only_delays = all(
            e.status == S.SCHEDULED.value and e.node_type == NodeType.DELAY.value
            for e in outstanding
        )
        if only_delays and run.status == RunStatus.RUNNING.value:
            resume_at = min(e.scheduled_at for e in outstanding if e.scheduled_at is not None)
            self._transition_run(
                session, run, RunStatus.PAUSED,
                waiting_on=[e.node_id for e in outstanding],
                resume_at=resume_at.isoformat(),
            )
        elif not only_delays and run.status == RunStatus.PAUSED.value:
            self._transition_run(session, run, RunStatus.RUNNING)

    # ─── Node execution ────────────────────────────────────

    async def execute_node(self, execution_id: str) -> Optional[str]:
        """Claim, run and complete one node execution.

        Returns the resulting node status, or None when the execution was
        not claimable (already claimed, finished, or its run is terminal).
        """
        claim = await self.claim(execution_id)
        if claim is None:
            return None
        return await self.process_claim(claim)

    async def resume_execution(self, execution_id: str) -> Optional[str]:
        """Entry point for the delay sweep: same as a queued execution."""
        return await self.execute_node(execution_id)

    async def process_claim(self, claim: Claim) -> str:
        bind_run_context(claim.run_id, node_id=claim.node.id, attempt=claim.attempt)
        outcome = await self._invoke(claim)
        return await self._complete(claim, outcome)

    async def claim(self, execution_id: str) -> Optional[Claim]:
        """Move a scheduled execution to running for this worker."""
        async with self.session_factory() as session:
            run_id = await session.scalar(
                select(NodeExecutionModel.run_id).where(NodeExecutionModel.id == execution_id)
            )
        if run_id is None:
            logger.warning("Unknown node execution", execution_id=execution_id)
            return None

        async with self.locked_run(run_id) as (session, run):
            if RunStatus(run.status) in TERMINAL_RUN_STATUSES:
                return None

            now = self.clock()
            result = await session.execute(
                update(NodeExecutionModel)
                .where(
                    NodeExecutionModel.id == execution_id,
                    NodeExecutionModel.status == S.SCHEDULED.value,
                )
                .values(
                    status=S.RUNNING.value,
                    claimed_by=self.worker_id,
                    claimed_at=now,
                    started_at=now,
                    attempt_count=NodeExecutionModel.attempt_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            executions = await self._load_executions(session, run.id)
            execution = next(e for e in executions.values() if e.id == execution_id)
            definition = await self.get_definition(session, run.definition_id)
            node = definition.node(execution.node_id)

            self.audit.record(
                session,
                AuditEventType.NODE_STATUS_CHANGED,
                run_id=run.id,
                node_execution_id=execution.id,
                actor_id=self.worker_id,
                node_id=execution.node_id,
                from_status=S.SCHEDULED.value,
                to_status=S.RUNNING.value,
                attempt=execution.attempt_count,
            )
            self._refresh_run_status(session, run, executions)

            prior_success = None
            if node.type in SIDE_EFFECT_NODE_TYPES:
                prior_success = await self.retry_manager.find_prior_success(
                    session, execution.idempotency_key
                )

            node_results: dict[str, Any] = {}
            for e in executions.values():
                if e.status == S.SUCCEEDED.value:
                    pred = definition.node(e.node_id)
                    node_results[pred.code] = e.result
                    node_results[pred.id] = e.result

            return Claim(
                execution_id=execution.id,
                run_id=run.id,
                node=node,
                attempt=execution.attempt_count,
                idempotency_key=execution.idempotency_key,
                scheduled_at=execution.scheduled_at,
                run_context=RunContext(
                    run_id=run.id,
                    workflow_id=run.workflow_id,
                    version=run.version,
                    payload=dict(run.trigger_payload or {}),
                    node_results=node_results,
                ),
                prior_success=prior_success,
            )

    async def _invoke(self, claim: Claim) -> AttemptOutcome:
        """Run the executor outside any lock; cancellable via cancel_run."""
        context = ExecutionContext(
            run=claim.run_context,
            idempotency_key=claim.idempotency_key,
            now=self.clock(),
            scheduled_at=claim.scheduled_at,
        )
        started_at = self.clock()
        try:
            executor = self.registry.resolve(claim.node.type)
        except ExecutionError as e:
            return AttemptOutcome(claim.attempt, started_at, self.clock(), error=e)

        task = asyncio.create_task(
            self.retry_manager.invoke(executor, claim.node, context, claim.attempt, claim.prior_success)
        )
        self._inflight.setdefault(claim.run_id, {})[claim.execution_id] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            running = self._inflight.get(claim.run_id, {})
            running.pop(claim.execution_id, None)
            if not running:
                self._inflight.pop(claim.run_id, None)

        if task.cancelled():
            return AttemptOutcome(claim.attempt, started_at, self.clock(), cancelled=True)
        return task.result()

    async def _complete(self, claim: Claim, outcome: AttemptOutcome) -> str:
        """Record the attempt and move the run forward in one transaction."""
        to_enqueue: list[str] = []
        async with self.locked_run(claim.run_id) as (session, run):
            executions = await self._load_executions(session, run.id)
            execution = executions[claim.node.id]
            self.retry_manager.record_attempt(session, execution, outcome)

            if (
                execution.status != S.RUNNING.value
                or execution.claimed_by != self.worker_id
                or execution.attempt_count != claim.attempt
            ):
                logger.warning(
                    "Claim lost before completion, result kept in step log",
                    execution_id=execution.id,
                    status=execution.status,
                )
                return execution.status

            now = self.clock()
            definition = await self.get_definition(session, run.definition_id)
            node = claim.node

            if RunStatus(run.status) in TERMINAL_RUN_STATUSES:
                # Finished after cancellation: close the execution, leave the run alone.
                execution.completed_at = now
                if outcome.success:
                    execution.result = outcome.result.to_dict()
                    self._transition_node(session, run, execution, S.SUCCEEDED, reason="run_terminal")
                else:
                    execution.error_message = "Cancelled with run" if outcome.cancelled else outcome.error.message
                    self._transition_node(session, run, execution, S.FAILED, reason="run_terminal")
                return execution.status

            if outcome.success:
                execution.result = outcome.result.to_dict()
                execution.error_message = None
                execution.completed_at = now
                self._transition_node(
                    session, run, execution, S.SUCCEEDED,
                    replayed=outcome.replayed,
                )
                self._advance(session, run, definition, executions, node.id, now, to_enqueue)
            else:
                error = outcome.error or TransientExecutionError("Execution interrupted")
                execution.error_message = error.message
                decision = self.retry_manager.decide(node, execution.attempt_count, error)

                if decision.retry:
                    due = decision.next_run_at(now)
                    execution.scheduled_at = due
                    execution.claimed_by = None
                    execution.claimed_at = None
                    self._transition_node(
                        session, run, execution, S.SCHEDULED,
                        reason="retry", scheduled_at=due.isoformat(),
                    )
                    self.audit.record(
                        session,
                        AuditEventType.NODE_RETRY_SCHEDULED,
                        run_id=run.id,
                        node_execution_id=execution.id,
                        actor_id=self.worker_id,
                        node_id=node.id,
                        attempt=execution.attempt_count,
                        delay_seconds=decision.delay_seconds,
                        scheduled_at=due.isoformat(),
                        error=error.message,
                    )
                    if decision.delay_seconds <= 0:
                        to_enqueue.append(execution.id)
                else:
                    # A permanent error ends the attempts as well; NODE_FAILED carries
                    # the detail and NODE_ATTEMPTS_EXHAUSTED follows it.
                    event_types = [AuditEventType.NODE_ATTEMPTS_EXHAUSTED]
                    if not decision.exhausted:
                        event_types.insert(0, AuditEventType.NODE_FAILED)
                    for event_type in event_types:
                        self.audit.record(
                            session,
                            event_type,
                            run_id=run.id,
                            node_execution_id=execution.id,
                            actor_id=self.worker_id,
                            node_id=node.id,
                            attempts=execution.attempt_count,
                            error=error.message,
                            error_kind=outcome.error_kind,
                            details=error.details,
                        )
                    execution.completed_at = now
                    self._transition_node(session, run, execution, S.FAILED, error=error.message)
                    self._advance(session, run, definition, executions, node.id, now, to_enqueue)

            self._refresh_run_status(session, run, executions)
            status = execution.status

        self.enqueue(to_enqueue)
        return status

    # ─── Cancellation ──────────────────────────────────────

    async def cancel_run(
        self,
        run_id: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> WorkflowRunModel:
        """Cancel a run, skip its unstarted nodes and stop in-flight executors.

        Raises:
            NotFoundError: unknown run
            InvalidStateTransition: run already terminal
        """
        async with self.locked_run(run_id) as (session, run):
            executions = await self._load_executions(session, run.id)
            self._transition_run(session, run, RunStatus.CANCELLED, actor_id=actor_id, reason=reason)
            now = self.clock()
            for execution in executions.values():
                if execution.status in (S.PENDING.value, S.SCHEDULED.value):
                    execution.completed_at = now
                    self._transition_node(
                        session, run, execution, S.SKIPPED,
                        actor_id=actor_id, reason="cancelled",
                    )
            inflight = list(self._inflight.get(run_id, {}).values())

        for task in inflight:
            task.cancel()
        logger.info("Run cancelled", run_id=run_id, inflight=len(inflight))
        return run

    # ─── Crash recovery ────────────────────────────────────

    async def recover_stale_claim(self, execution_id: str, stale_before: datetime) -> bool:
        """Put a ``running`` execution whose claim predates ``stale_before`` back to ``scheduled``.

        The idempotency key and the step log make the re-run safe: a send
        that already happened is replayed from the log, not repeated.
        """
        async with self.session_factory() as session:
            run_id = await session.scalar(
                select(NodeExecutionModel.run_id).where(NodeExecutionModel.id == execution_id)
            )
        if run_id is None:
            return False

        async with self.locked_run(run_id) as (session, run):
            executions = await self._load_executions(session, run.id)
            execution = next((e for e in executions.values() if e.id == execution_id), None)
            if (
                execution is None
                or execution.status != S.RUNNING.value
                or execution.claimed_at is None
                or execution.claimed_at > stale_before
            ):
                return False

            now = self.clock()
            previous_owner = execution.claimed_by
            execution.claimed_by = None
            execution.claimed_at = None

            if RunStatus(run.status) in TERMINAL_RUN_STATUSES:
                execution.completed_at = now
                execution.error_message = "Abandoned after the run ended"
                self._transition_node(
                    session, run, execution, S.FAILED,
                    reason="stale_claim", previous_owner=previous_owner,
                )
                return True

            execution.scheduled_at = now
            self._transition_node(
                session, run, execution, S.SCHEDULED,
                reason="stale_claim", previous_owner=previous_owner,
            )
            self._refresh_run_status(session, run, executions)

        logger.warning("Re-queued stale claim", execution_id=execution_id, previous_owner=previous_owner)
        return True

    def inflight_count(self, run_id: Optional[str] = None) -> int:
        if run_id is not None:
            return len(self._inflight.get(run_id, {}))
        return sum(len(tasks) for tasks in self._inflight.values())


# ─── Singleton ─────────────────────────────────────────────────

_scheduler: Optional[ExecutionScheduler] = None


def get_execution_scheduler() -> ExecutionScheduler:
    """Get or create the process-wide ExecutionScheduler."""
    global _scheduler
    if _scheduler is None:
        from app.config import get_settings
        from db.database import AsyncSessionLocal
        from notifications.providers import build_providers
        from tasks.registry import build_default_registry

        settings = get_settings()
        email_provider, sms_provider = build_providers(settings)
        _scheduler = ExecutionScheduler(
            session_factory=AsyncSessionLocal,
            registry=build_default_registry(email_provider, sms_provider, settings),
            retry_manager=RetryManager.from_settings(settings),
            pool_size=settings.WORKER_POOL_SIZE,
        )
    return _scheduler
