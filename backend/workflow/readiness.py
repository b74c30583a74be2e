"""AND-join readiness of a node inside a run.

For every incoming edge of a node the predecessor's execution decides the
edge state:

    succeeded + condition matches (or none)  -> satisfied
    succeeded + condition does not match     -> inactive
    skipped                                  -> inactive
    failed                                   -> blocked (node is skipped)
    anything else                            -> unresolved (node waits)

A node is READY when nothing is unresolved or blocked and at least one edge
is satisfied, SKIP when every edge is resolved and none is satisfied (or one
is blocked), and WAIT otherwise.
"""

from enum import Enum
from typing import Any, Mapping, Protocol

from core.constants import NodeExecutionStatus
from workflow.conditions import match_condition
from workflow.definition import WorkflowDefinition


class Readiness(str, Enum):
    READY = "ready"
    SKIP = "skip"
    WAIT = "wait"


class _ExecutionLike(Protocol):
    status: str
    result: Any


def evaluate_readiness(
    definition: WorkflowDefinition,
    node_id: str,
    executions: Mapping[str, _ExecutionLike],
) -> Readiness:
    """Decide whether ``node_id`` can be dispatched given its predecessors."""
    incoming = definition.incoming(node_id)
    if not incoming:
        return Readiness.READY

    satisfied = False
    waiting = False
    for edge in incoming:
        pred = executions.get(edge.from_node_id)
        status = pred.status if pred is not None else NodeExecutionStatus.PENDING.value

        if status == NodeExecutionStatus.FAILED.value:
            return Readiness.SKIP
        if status == NodeExecutionStatus.SUCCEEDED.value:
            if match_condition(edge.condition, pred.result or {}):
                satisfied = True
        elif status != NodeExecutionStatus.SKIPPED.value:
            waiting = True

    if waiting:
        return Readiness.WAIT
    return Readiness.READY if satisfied else Readiness.SKIP
