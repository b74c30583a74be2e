"""Tests for run and node execution state machines."""

from types import SimpleNamespace

import pytest

from core.constants import NodeExecutionStatus, RunStatus
from core.exceptions import InvalidStateTransition
from workflow.state_machine import (
    can_transition_node,
    can_transition_run,
    transition_node,
    transition_run,
)

pytestmark = pytest.mark.unit


class TestRunTransitions:
    @pytest.mark.parametrize("current,target", [
        ("created", "running"),
        ("running", "paused"),
        ("paused", "running"),
        ("running", "completed"),
        ("running", "failed"),
        ("paused", "cancelled"),
    ])
    def test_allowed(self, current, target):
        assert can_transition_run(current, target)

    @pytest.mark.parametrize("terminal", ["completed", "failed", "cancelled"])
    def test_terminal_states_are_final(self, terminal):
        for target in RunStatus:
            assert not can_transition_run(terminal, target.value)

    def test_paused_cannot_complete_directly(self):
        assert not can_transition_run("paused", "completed")

    def test_transition_returns_previous(self):
        run = SimpleNamespace(status="running")
        assert transition_run(run, RunStatus.PAUSED) == "running"
        assert run.status == "paused"

    def test_illegal_transition_leaves_status(self):
        run = SimpleNamespace(status="completed")
        with pytest.raises(InvalidStateTransition) as exc:
            transition_run(run, RunStatus.RUNNING)
        assert run.status == "completed"
        assert exc.value.status_code == 409
        assert exc.value.entity == "run"


class TestNodeTransitions:
    def test_happy_path(self):
        execution = SimpleNamespace(status="pending")
        for target in ("scheduled", "running", "succeeded"):
            transition_node(execution, NodeExecutionStatus(target))
        assert execution.status == "succeeded"

    def test_retry_goes_back_to_scheduled(self):
        assert can_transition_node("running", "scheduled")

    def test_pending_cannot_run_without_scheduling(self):
        assert not can_transition_node("pending", "running")

    @pytest.mark.parametrize("terminal", ["succeeded", "failed", "skipped"])
    def test_terminal_states_are_final(self, terminal):
        execution = SimpleNamespace(status=terminal)
        with pytest.raises(InvalidStateTransition):
            transition_node(execution, NodeExecutionStatus.RUNNING)
