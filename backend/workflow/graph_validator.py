"""Structural validation of workflow definitions.

A definition may be triggered only if its nodes and edges form a DAG
with exactly one entry node, every edge connects two nodes of the same
workflow, and every node has a known type. Validation runs when a version
is published and again before the first dispatch of a run.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import structlog

from core.constants import NodeType
from core.exceptions import (
    CycleDetected,
    DanglingEdge,
    GraphError,
    MultipleOrZeroEntryNodes,
    UnknownNodeType,
)
from workflow.definition import WorkflowDefinition

logger = structlog.get_logger(__name__)

KNOWN_NODE_TYPES = frozenset(t.value for t in NodeType)


@dataclass
class ValidationResult:
    """Outcome of validating one definition."""

    errors: list[GraphError] = field(default_factory=list)
    topological_order: list[str] = field(default_factory=list)
    entry_node_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_first(self) -> None:
        if self.errors:
            raise self.errors[0]


def _kahn_order(node_ids: list[str], edges: list[tuple[str, str]]) -> tuple[list[str], set[str]]:
    """Topologically sort ``node_ids``; return (order, nodes left on a cycle)."""
    in_degree = {nid: 0 for nid in node_ids}
    adjacency: dict[str, list[str]] = {nid: [] for nid in node_ids}
    for src, dst in edges:
        adjacency[src].append(dst)
        in_degree[dst] += 1

    queue = deque(nid for nid in node_ids if in_degree[nid] == 0)
    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for nxt in adjacency[current]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                queue.append(nxt)

    remaining = {nid for nid, deg in in_degree.items() if deg > 0}
    return order, remaining


def validate_graph(definition: WorkflowDefinition) -> ValidationResult:
    """Check a definition and collect every structural error found."""
    result = ValidationResult()
    node_ids = [n.id for n in definition.nodes]
    known = set(node_ids)

    for node in definition.nodes:
        if node.type not in KNOWN_NODE_TYPES:
            result.errors.append(UnknownNodeType(
                f"Node '{node.code}' has unknown type '{node.type}'",
                {"node_id": node.id, "type": node.type},
            ))

    usable_edges: list[tuple[str, str]] = []
    for edge in definition.edges:
        missing = [nid for nid in (edge.from_node_id, edge.to_node_id) if nid not in known]
        if missing:
            result.errors.append(DanglingEdge(
                f"Edge {edge.id} references unknown node(s): {', '.join(missing)}",
                {"edge_id": edge.id, "missing_node_ids": missing},
            ))
            continue
        if edge.workflow_id != definition.workflow_id:
            result.errors.append(DanglingEdge(
                f"Edge {edge.id} belongs to workflow {edge.workflow_id}",
                {"edge_id": edge.id, "workflow_id": edge.workflow_id},
            ))
            continue
        usable_edges.append((edge.from_node_id, edge.to_node_id))

    order, on_cycle = _kahn_order(node_ids, usable_edges)
    if on_cycle:
        result.errors.append(CycleDetected(
            "Workflow graph contains a cycle",
            {"node_ids": sorted(on_cycle)},
        ))
    else:
        result.topological_order = order

    targets = {dst for _, dst in usable_edges}
    entries = [nid for nid in node_ids if nid not in targets]
    if len(entries) == 1:
        result.entry_node_id = entries[0]
    elif not on_cycle:
        result.errors.append(MultipleOrZeroEntryNodes(
            f"Workflow must have exactly one entry node, found {len(entries)}",
            {"entry_node_ids": entries},
        ))

    if result.errors:
        logger.info(
            "Workflow definition rejected",
            workflow_id=definition.workflow_id,
            version=definition.version,
            errors=[e.code for e in result.errors],
        )
    return result


def ensure_valid(definition: WorkflowDefinition) -> ValidationResult:
    """Validate and raise the first GraphError found."""
    result = validate_graph(definition)
    result.raise_first()
    return result
