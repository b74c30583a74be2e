"""Run and node execution state machines.

Every status change made by the scheduler goes through ``transition_run`` or
``transition_node``; an illegal move raises InvalidStateTransition before
anything is written.
"""

from core.constants import NodeExecutionStatus, RunStatus
from core.exceptions import InvalidStateTransition

RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.CREATED: frozenset({RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset({
        RunStatus.PAUSED,
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }),
    RunStatus.PAUSED: frozenset({
        RunStatus.RUNNING,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}

NODE_TRANSITIONS: dict[NodeExecutionStatus, frozenset[NodeExecutionStatus]] = {
    NodeExecutionStatus.PENDING: frozenset({
        NodeExecutionStatus.SCHEDULED,
        NodeExecutionStatus.SKIPPED,
    }),
    NodeExecutionStatus.SCHEDULED: frozenset({
        NodeExecutionStatus.RUNNING,
        NodeExecutionStatus.SKIPPED,
    }),
    # running -> scheduled is a retry with backoff
    NodeExecutionStatus.RUNNING: frozenset({
        NodeExecutionStatus.SUCCEEDED,
        NodeExecutionStatus.FAILED,
        NodeExecutionStatus.SCHEDULED,
    }),
    NodeExecutionStatus.SUCCEEDED: frozenset(),
    NodeExecutionStatus.FAILED: frozenset(),
    NodeExecutionStatus.SKIPPED: frozenset(),
}


def can_transition_run(current: str, target: str) -> bool:
    return RunStatus(target) in RUN_TRANSITIONS[RunStatus(current)]


def can_transition_node(current: str, target: str) -> bool:
    return NodeExecutionStatus(target) in NODE_TRANSITIONS[NodeExecutionStatus(current)]


def transition_run(run, target: RunStatus) -> str:
    """Move ``run`` to ``target`` and return the previous status."""
    previous = run.status
    if not can_transition_run(previous, target):
        raise InvalidStateTransition("run", previous, RunStatus(target).value)
    run.status = RunStatus(target).value
    return previous


def transition_node(execution, target: NodeExecutionStatus) -> str:
    """Move a node execution to ``target`` and return the previous status."""
    previous = execution.status
    if not can_transition_node(previous, target):
        raise InvalidStateTransition("node_execution", previous, NodeExecutionStatus(target).value)
    execution.status = NodeExecutionStatus(target).value
    return previous
