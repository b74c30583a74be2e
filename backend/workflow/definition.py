"""Immutable in-memory view of a published workflow definition.

The engine never works on ORM rows directly: the Definition Store turns a
``WorkflowDefinitionModel`` (plus its nodes and edges) into these frozen
dataclasses, which are safe to cache and share between workers.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class NodeTemplate:
    """A typed unit of work (email, sms, delay)."""

    id: str
    code: str
    type: str
    name: str = ""
    template_body: dict[str, Any] = field(default_factory=dict)
    position: int = 0
    timeout_seconds: Optional[float] = None
    max_attempts: Optional[int] = None


@dataclass(frozen=True)
class WorkflowEdge:
    """Directed connection between two nodes, optionally conditional."""

    id: str
    workflow_id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """One published version of a workflow: nodes plus edges."""

    id: str
    workflow_id: str
    name: str
    version: int
    nodes: tuple[NodeTemplate, ...] = ()
    edges: tuple[WorkflowEdge, ...] = ()
    code: str = ""
    payload_schema: Optional[dict[str, Any]] = None
    status: str = "published"

    def node(self, node_id: str) -> NodeTemplate:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def incoming(self, node_id: str) -> list[WorkflowEdge]:
        """Edges whose target is ``node_id``."""
        return [e for e in self.edges if e.to_node_id == node_id]

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        """Edges whose source is ``node_id``."""
        return [e for e in self.edges if e.from_node_id == node_id]

    def successors(self, node_id: str) -> list[str]:
        seen: list[str] = []
        for edge in self.outgoing(node_id):
            if edge.to_node_id not in seen:
                seen.append(edge.to_node_id)
        return seen

    def entry_nodes(self) -> list[NodeTemplate]:
        targets = {e.to_node_id for e in self.edges}
        return [n for n in self.nodes if n.id not in targets]

    @classmethod
    def from_model(cls, model, include_deleted: bool = False) -> "WorkflowDefinition":
        """Build from a WorkflowDefinitionModel.

        Soft-deleted nodes and edges are dropped unless ``include_deleted``;
        runs pinned to a since-deleted version load it with the full graph.
        """
        nodes = tuple(
            NodeTemplate(
                id=n.id,
                code=n.code,
                type=n.node_type,
                name=n.name,
                template_body=dict(n.template_body or {}),
                position=n.position,
                timeout_seconds=n.timeout_seconds,
                max_attempts=n.max_attempts,
            )
            for n in sorted(model.nodes, key=lambda n: n.position)
            if include_deleted or not n.is_deleted
        )
        edges = tuple(
            WorkflowEdge(
                id=e.id,
                workflow_id=e.workflow_id,
                from_node_id=e.from_node_id,
                to_node_id=e.to_node_id,
                condition=dict(e.condition) if e.condition else None,
            )
            for e in model.edges
            if include_deleted or not e.is_deleted
        )
        return cls(
            id=model.id,
            workflow_id=model.workflow_id,
            name=model.name,
            version=model.version,
            nodes=nodes,
            edges=edges,
            code=model.code,
            payload_schema=model.payload_schema,
            status=model.status,
        )


@dataclass
class RunContext:
    """Data visible to executors while rendering templates.

    Holds the trigger payload plus the result of every succeeded
    predecessor, addressable by node code and by node id.
    """

    run_id: str
    workflow_id: str
    version: int
    payload: dict[str, Any] = field(default_factory=dict)
    node_results: dict[str, Any] = field(default_factory=dict)

    def namespace(self) -> dict[str, Any]:
        return {
            "payload": self.payload,
            "trigger": {"payload": self.payload},
            "nodes": self.node_results,
            "run": {
                "id": self.run_id,
                "workflow_id": self.workflow_id,
                "version": self.version,
            },
        }
