"""Tests for the delay sweep: due detection, claiming and stale-claim recovery."""

from datetime import timedelta

import pytest

from core.constants import NodeExecutionStatus, RunStatus
from workflow.delay_timer import SweepResult

from conftest import T0

pytestmark = pytest.mark.integration

PAYLOAD = {"user": {"email": "ada@example.com"}}
EMAIL = {"code": "send", "type": "email", "template_body": {"to": "{{ payload.user.email }}", "subject": "s"}}


def delay(code="wait", **body):
    return {"code": code, "type": "delay", "template_body": body}


class TestDueDetection:
    @pytest.mark.asyncio
    async def test_nothing_due_before_scheduled_time(self, publish, start_run, sweep, clock, state):
        wf = await publish([delay(hours=1)])
        started = await start_run(wf.workflow_id)
        assert (await state.run(started.run_id)).status == RunStatus.PAUSED.value

        clock.advance(minutes=59, seconds=59)
        result = await sweep.sweep_once()
        assert result == SweepResult()

    @pytest.mark.asyncio
    async def test_due_exactly_at_scheduled_time(self, publish, start_run, sweep, clock, state):
        wf = await publish([delay(hours=1)])
        started = await start_run(wf.workflow_id)

        clock.advance(hours=1)
        result = await sweep.sweep_once()

        assert len(result.resumed) == 1
        execution = (await state.executions(started.run_id))["wait"]
        assert execution.status == NodeExecutionStatus.SUCCEEDED.value
        assert execution.result == {"delayed_seconds": 3600.0, "resumed_at": clock.now.isoformat()}
        assert (await state.run(started.run_id)).status == RunStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_resumes_oldest_first(self, publish, start_run, sweep, clock, state):
        later = await publish([delay(hours=2)], name="later")
        sooner = await publish([delay(hours=1)], name="sooner")
        late_run = await start_run(later.workflow_id)
        soon_run = await start_run(sooner.workflow_id)

        clock.advance(hours=3)
        result = await sweep.sweep_once()

        expected = [
            (await state.executions(soon_run.run_id))["wait"].id,
            (await state.executions(late_run.run_id))["wait"].id,
        ]
        assert result.resumed == expected

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, publish, start_run, sweep):
        wf = await publish([delay(minutes=5)])
        await start_run(wf.workflow_id)

        result = await sweep.sweep_once(now=T0 + timedelta(minutes=4))
        assert result.resumed == []


class TestClaiming:
    @pytest.mark.asyncio
    async def test_execution_is_claimed_once(self, publish, start_run, scheduler, clock, state):
        wf = await publish([delay(seconds=10)])
        started = await start_run(wf.workflow_id)
        execution_id = (await state.executions(started.run_id))["wait"].id

        clock.advance(seconds=10)
        assert await scheduler.resume_execution(execution_id) == NodeExecutionStatus.SUCCEEDED.value
        assert await scheduler.resume_execution(execution_id) is None

        execution = (await state.executions(started.run_id))["wait"]
        assert execution.attempt_count == 1
        assert len(await state.step_logs(started.run_id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, publish, start_run, scheduler, state):
        wf = await publish([EMAIL])
        started = await start_run(wf.workflow_id, PAYLOAD)
        execution_id = (await state.executions(started.run_id))["send"].id

        first = await scheduler.claim(execution_id)
        second = await scheduler.claim(execution_id)

        assert first is not None
        assert first.attempt == 1
        assert second is None

    @pytest.mark.asyncio
    async def test_unknown_execution(self, scheduler):
        assert await scheduler.resume_execution("no-such-execution") is None


class TestStaleClaims:
    @pytest.mark.asyncio
    async def test_abandoned_claim_is_requeued(self, publish, start_run, scheduler, sweep, clock, state,
                                               email_provider):
        wf = await publish([EMAIL])
        started = await start_run(wf.workflow_id, PAYLOAD)
        execution_id = (await state.executions(started.run_id))["send"].id

        # A worker claims the execution and dies before running it
        assert await scheduler.claim(execution_id) is not None

        clock.advance(minutes=5)
        result = await sweep.sweep_once()
        assert result.requeued == []
        assert (await state.executions(started.run_id))["send"].status == NodeExecutionStatus.RUNNING.value

        clock.advance(minutes=6)
        result = await sweep.sweep_once()
        assert result.requeued == [execution_id]
        assert result.resumed == [execution_id]

        execution = (await state.executions(started.run_id))["send"]
        assert execution.status == NodeExecutionStatus.SUCCEEDED.value
        assert execution.attempt_count == 2
        assert email_provider.calls == 1
        assert (await state.run(started.run_id)).status == RunStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_stale_claim_of_finished_run_fails(self, publish, start_run, scheduler, sweep, clock, state):
        wf = await publish([EMAIL])
        started = await start_run(wf.workflow_id, PAYLOAD)
        execution_id = (await state.executions(started.run_id))["send"].id

        await scheduler.claim(execution_id)
        await scheduler.cancel_run(started.run_id)

        clock.advance(minutes=11)
        result = await sweep.sweep_once()
        assert result.requeued == [execution_id]
        assert result.resumed == []

        execution = (await state.executions(started.run_id))["send"]
        assert execution.status == NodeExecutionStatus.FAILED.value
        assert execution.error_message == "Abandoned after the run ended"
        assert (await state.run(started.run_id)).status == RunStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_fresh_claim_is_not_recovered(self, publish, start_run, scheduler, clock, state):
        wf = await publish([EMAIL])
        started = await start_run(wf.workflow_id, PAYLOAD)
        execution_id = (await state.executions(started.run_id))["send"].id
        await scheduler.claim(execution_id)

        assert await scheduler.recover_stale_claim(execution_id, stale_before=clock.now - timedelta(seconds=1)) is False


class TestSweepLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweep):
        await sweep.start()
        assert sweep._task is not None
        await sweep.stop()
        assert sweep._task is None

    def test_from_settings(self, scheduler):
        from app.config import get_settings
        from workflow.delay_timer import DelayTimerService

        settings = get_settings()
        service = DelayTimerService.from_settings(scheduler, settings)
        assert service.interval_seconds == settings.DELAY_SWEEP_INTERVAL_SECONDS
        assert service.stale_after == timedelta(seconds=settings.STALE_CLAIM_SECONDS)
