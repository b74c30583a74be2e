"""Tests for trigger ingestion: idempotency, payload validation and permissions."""

import pytest
from sqlalchemy.exc import OperationalError

from core.constants import ActorRole, AuditEventType, RunStatus
from core.exceptions import ForbiddenError, InfrastructureError, NotFoundError, ValidationError
from core.security import Actor

pytestmark = pytest.mark.integration

EMAIL = {"code": "send", "type": "email", "template_body": {"to": "{{ payload.user.email }}", "subject": "s"}}
SCHEMA = {"required": ["user"], "properties": {"user": {"type": "object"}}}
PAYLOAD = {"user": {"email": "ada@example.com"}}


class TestIngest:
    @pytest.mark.asyncio
    async def test_creates_run_and_enqueues_entry(self, publish, trigger_service, operator, scheduler, state):
        wf = await publish([EMAIL])
        result = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD)

        assert result.duplicate is False
        assert result.status == RunStatus.RUNNING.value
        assert scheduler.queue_size == 1

        run = await state.run(result.run_id)
        assert run.workflow_id == wf.workflow_id
        assert run.definition_id == wf.id
        assert run.actor_id == operator.id
        assert run.trigger_payload == PAYLOAD

        created = await state.audit(result.run_id, AuditEventType.RUN_CREATED.value)
        assert created[0].actor_id == operator.id
        assert created[0].event_data["version"] == 1

    @pytest.mark.asyncio
    async def test_uses_latest_published_version(self, publish, trigger_service, operator, state):
        first = await publish([EMAIL])
        second = await publish([EMAIL], workflow_id=first.workflow_id)

        result = await trigger_service.ingest(operator, first.workflow_id, PAYLOAD)
        run = await state.run(result.run_id)
        assert run.definition_id == second.id
        assert run.version == 2


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_same_key_returns_same_run(self, publish, trigger_service, operator, scheduler, state):
        wf = await publish([EMAIL])
        first = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="order-1")
        second = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="order-1")

        assert second.run_id == first.run_id
        assert second.duplicate is True
        assert len(await state.runs()) == 1
        assert scheduler.queue_size == 1

        duplicates = await state.audit(first.run_id, AuditEventType.TRIGGER_DUPLICATE.value)
        assert len(duplicates) == 1
        assert duplicates[0].event_data["idempotency_key"] == "order-1"

    @pytest.mark.asyncio
    async def test_different_keys_create_separate_runs(self, publish, trigger_service, operator, state):
        wf = await publish([EMAIL])
        a = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="k-1")
        b = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="k-2")
        c = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD)

        assert len({a.run_id, b.run_id, c.run_id}) == 3
        assert len(await state.runs()) == 3

    @pytest.mark.asyncio
    async def test_lost_insert_race_returns_winner(self, publish, trigger_service, operator, state, monkeypatch):
        wf = await publish([EMAIL])
        winner = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="race")

        real_find = trigger_service._find_existing
        calls = []

        async def find_after_race(workflow_id, key):
            calls.append(key)
            # The first lookup happens before the concurrent insert commits
            if len(calls) == 1:
                return None
            return await real_find(workflow_id, key)

        monkeypatch.setattr(trigger_service, "_find_existing", find_after_race)
        loser = await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="race")

        assert loser.run_id == winner.run_id
        assert loser.duplicate is True
        assert len(calls) == 2
        assert len(await state.runs()) == 1


class TestRejections:
    @pytest.mark.asyncio
    async def test_invalid_payload_creates_no_run(self, publish, trigger_service, operator, state):
        wf = await publish([EMAIL], payload_schema=SCHEMA)
        with pytest.raises(ValidationError, match="missing required field 'user'"):
            await trigger_service.ingest(operator, wf.workflow_id, {"other": 1})
        assert await state.runs() == []

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, trigger_service, operator):
        with pytest.raises(NotFoundError):
            await trigger_service.ingest(operator, "no-such-workflow", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [ActorRole.WORKER_SERVICE.value, ActorRole.WORKFLOW_MANAGER.value])
    async def test_actor_without_trigger_capability(self, publish, trigger_service, state, role):
        wf = await publish([EMAIL])
        with pytest.raises(ForbiddenError, match="trigger.execute"):
            await trigger_service.ingest(Actor(id="x", roles=[role]), wf.workflow_id, PAYLOAD)
        assert await state.runs() == []

    @pytest.mark.asyncio
    async def test_store_failure_is_retryable(self, publish, trigger_service, operator, monkeypatch):
        wf = await publish([EMAIL])

        async def broken_create_run(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(trigger_service.scheduler, "create_run", broken_create_run)
        with pytest.raises(InfrastructureError) as exc:
            await trigger_service.ingest(operator, wf.workflow_id, PAYLOAD, idempotency_key="k")
        assert exc.value.status_code == 503
