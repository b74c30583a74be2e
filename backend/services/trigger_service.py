"""Trigger ingestion: the entry point for TriggerOperators.

Resolves the latest published version of a workflow, validates the payload
and asks the scheduler to start a run, all in one transaction. With an
idempotency key a repeated trigger returns the run created by the first
call, including when two calls race on the insert.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import AuditEventType, Capability
from core.exceptions import InfrastructureError
from core.rbac import require_capability
from core.schema_validation import ensure_payload_valid
from core.security import Actor
from db.models.workflow_run import WorkflowRunModel
from services.definition_store import DefinitionStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one trigger call."""
    run_id: str
    status: str
    duplicate: bool = False


class TriggerIngestionService:
    """Turns external triggers into workflow runs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], scheduler):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.audit = scheduler.audit

    async def _find_existing(self, workflow_id: str, idempotency_key: str) -> Optional[WorkflowRunModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WorkflowRunModel).where(
                    WorkflowRunModel.workflow_id == workflow_id,
                    WorkflowRunModel.idempotency_key == idempotency_key,
                )
            )
            return result.scalar_one_or_none()

    async def _duplicate(self, run: WorkflowRunModel, actor: Actor) -> IngestionResult:
        async with self.session_factory() as session:
            async with session.begin():
                self.audit.record(
                    session,
                    AuditEventType.TRIGGER_DUPLICATE,
                    run_id=run.id,
                    actor_id=actor.id,
                    workflow_id=run.workflow_id,
                    idempotency_key=run.idempotency_key,
                )
        logger.info(f"Duplicate trigger for workflow {run.workflow_id}, returning run {run.id}")
        return IngestionResult(run_id=run.id, status=run.status, duplicate=True)

    async def ingest(
        self,
        actor: Actor,
        workflow_id: str,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> IngestionResult:
        """Start a run of the latest published version of ``workflow_id``.

        Raises:
            ForbiddenError: actor lacks trigger.execute
            NotFoundError: no active published version
            ValidationError / GraphError: payload or definition rejected; no run created
            InfrastructureError: the store is unavailable; safe to retry with the same key
        """
        require_capability(actor, Capability.TRIGGER_EXECUTE)

        try:
            if idempotency_key:
                existing = await self._find_existing(workflow_id, idempotency_key)
                if existing is not None:
                    return await self._duplicate(existing, actor)

            async with self.session_factory() as session:
                try:
                    async with session.begin():
                        definition = await DefinitionStore(session).get_workflow_definition(workflow_id)
                        ensure_payload_valid(definition.payload_schema, payload)
                        run, to_enqueue = await self.scheduler.create_run(
                            session,
                            definition,
                            payload,
                            actor_id=actor.id,
                            idempotency_key_value=idempotency_key,
                        )
                except IntegrityError:
                    if not idempotency_key:
                        raise
                    # Lost the insert race to a concurrent trigger with the same key.
                    existing = await self._find_existing(workflow_id, idempotency_key)
                    if existing is None:
                        raise
                    return await self._duplicate(existing, actor)

        except SQLAlchemyError as e:
            logger.error(f"Trigger ingestion failed for workflow {workflow_id}: {e}")
            raise InfrastructureError(
                "Workflow store unavailable; retry with the same idempotency key"
            ) from e

        self.scheduler.enqueue(to_enqueue)
        return IngestionResult(run_id=run.id, status=run.status)
