"""Definition Store: versioned, soft-deletable workflow definitions.

Reads go through the "active" view (soft-deleted versions are invisible)
unless ``include_deleted`` asks for the "all" view. Published versions are
immutable: publishing again creates the next version number.
"""

import logging
from typing import Any, Optional, Sequence
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AuditEventType, Capability, NodeType, WorkflowStatus
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.rbac import require_capability
from core.schema_validation import parse_payload_schema
from core.security import Actor
from core.utils import utc_now
from db.models.node_template import NodeTemplateModel
from db.models.workflow import WorkflowDefinitionModel
from db.models.workflow_edge import WorkflowEdgeModel
from services.audit_service import AuditLogWriter
from services.base import BaseService
from tasks.implementations.delay_task import parse_delay
from workflow.conditions import validate_condition
from workflow.definition import NodeTemplate, WorkflowDefinition, WorkflowEdge
from workflow.graph_validator import ensure_valid

logger = logging.getLogger(__name__)


class DefinitionStore(BaseService[WorkflowDefinitionModel]):
    """Read and publish workflow definitions."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditLogWriter] = None):
        super().__init__(WorkflowDefinitionModel, db)
        self.audit = audit or AuditLogWriter()

    # ─── Read ──────────────────────────────────────────────

    async def get_model(
        self,
        workflow_id: str,
        version: Optional[int] = None,
        include_deleted: bool = False,
    ) -> WorkflowDefinitionModel:
        """Definition row for a version, or the latest published one."""
        query = self._query(include_deleted).where(
            WorkflowDefinitionModel.workflow_id == workflow_id
        )
        if version is not None:
            query = query.where(WorkflowDefinitionModel.version == version)
        else:
            query = query.where(
                WorkflowDefinitionModel.status == WorkflowStatus.PUBLISHED.value
            ).order_by(WorkflowDefinitionModel.version.desc()).limit(1)

        result = await self.db.execute(query)
        model = result.scalars().first()
        if model is None:
            suffix = f" version {version}" if version is not None else ""
            raise NotFoundError(f"Workflow {workflow_id}{suffix} not found")
        return model

    async def get_workflow_definition(
        self,
        workflow_id: str,
        version: Optional[int] = None,
    ) -> WorkflowDefinition:
        """Active view lookup; ``version=None`` means latest published."""
        model = await self.get_model(workflow_id, version)
        return WorkflowDefinition.from_model(model)

    async def list_versions(
        self,
        workflow_id: str,
        include_deleted: bool = False,
    ) -> Sequence[WorkflowDefinitionModel]:
        return await self.list(
            include_deleted=include_deleted,
            order_by="version",
            filters={"workflow_id": workflow_id},
        )

    # ─── Publish ───────────────────────────────────────────

    @staticmethod
    def _check_node_bodies(definition: WorkflowDefinition) -> None:
        for node in definition.nodes:
            if node.type == NodeType.DELAY.value:
                try:
                    parse_delay(node.template_body)
                except ValidationError as e:
                    raise ValidationError(f"Node '{node.code}': {e.message}") from e
            if node.max_attempts is not None and node.max_attempts < 1:
                raise ValidationError(f"Node '{node.code}': max_attempts must be at least 1")
            if node.timeout_seconds is not None and node.timeout_seconds <= 0:
                raise ValidationError(f"Node '{node.code}': timeout_seconds must be positive")
        for edge in definition.edges:
            validate_condition(edge.condition)

    async def publish(
        self,
        actor: Actor,
        name: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        workflow_id: Optional[str] = None,
        code: Optional[str] = None,
        payload_schema: Optional[dict[str, Any]] = None,
    ) -> WorkflowDefinitionModel:
        """Validate and store a new published version.

        Nodes are ``{"code", "type", "name"?, "template_body"?,
        "timeout_seconds"?, "max_attempts"?}``; edges reference nodes by
        code: ``{"from", "to", "condition"?}``.

        Raises:
            ForbiddenError: actor lacks workflows.manage
            GraphError: the nodes and edges are not a valid DAG
            ValidationError: malformed node body, condition or payload schema
        """
        require_capability(actor, Capability.WORKFLOWS_MANAGE)
        parse_payload_schema(payload_schema)

        workflow_id = workflow_id or str(uuid4())
        definition_id = str(uuid4())

        codes = [n["code"] for n in nodes]
        if len(set(codes)) != len(codes):
            raise ValidationError("Node codes must be unique within a workflow")
        ids_by_code = {c: str(uuid4()) for c in codes}

        node_templates = tuple(
            NodeTemplate(
                id=ids_by_code[n["code"]],
                code=n["code"],
                type=n["type"],
                name=n.get("name") or n["code"],
                template_body=dict(n.get("template_body") or {}),
                position=i,
                timeout_seconds=n.get("timeout_seconds"),
                max_attempts=n.get("max_attempts"),
            )
            for i, n in enumerate(nodes)
        )
        # Unknown codes keep their code as id so validation reports a dangling edge.
        workflow_edges = tuple(
            WorkflowEdge(
                id=str(uuid4()),
                workflow_id=workflow_id,
                from_node_id=ids_by_code.get(e["from"], e["from"]),
                to_node_id=ids_by_code.get(e["to"], e["to"]),
                condition=e.get("condition"),
            )
            for e in edges
        )

        latest = await self.db.scalar(
            select(func.max(WorkflowDefinitionModel.version)).where(
                WorkflowDefinitionModel.workflow_id == workflow_id
            )
        )
        version = (latest or 0) + 1

        definition = WorkflowDefinition(
            id=definition_id,
            workflow_id=workflow_id,
            name=name,
            version=version,
            nodes=node_templates,
            edges=workflow_edges,
            code=code or name,
            payload_schema=payload_schema,
        )
        ensure_valid(definition)
        self._check_node_bodies(definition)

        now = utc_now()
        model = WorkflowDefinitionModel(
            id=definition_id,
            workflow_id=workflow_id,
            code=definition.code,
            name=name,
            version=version,
            status=WorkflowStatus.PUBLISHED.value,
            payload_schema=payload_schema,
            published_at=now,
            created_by_id=actor.id,
        )
        model.nodes = [
            NodeTemplateModel(
                id=n.id,
                definition_id=definition_id,
                code=n.code,
                name=n.name,
                node_type=n.type,
                position=n.position,
                template_body=n.template_body,
                timeout_seconds=n.timeout_seconds,
                max_attempts=n.max_attempts,
            )
            for n in node_templates
        ]
        model.edges = [
            WorkflowEdgeModel(
                id=e.id,
                definition_id=definition_id,
                workflow_id=workflow_id,
                from_node_id=e.from_node_id,
                to_node_id=e.to_node_id,
                condition=e.condition,
            )
            for e in workflow_edges
        ]
        self.add(model)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Workflow {workflow_id} version {version} was published concurrently"
            ) from e

        self.audit.record(
            self.db,
            AuditEventType.WORKFLOW_PUBLISHED,
            actor_id=actor.id,
            workflow_id=workflow_id,
            definition_id=definition_id,
            version=version,
        )
        logger.info(f"Published workflow {workflow_id} version {version}")
        return model

    # ─── Delete ────────────────────────────────────────────

    async def soft_delete_version(
        self,
        actor: Actor,
        workflow_id: str,
        version: int,
    ) -> WorkflowDefinitionModel:
        """Hide a version from the active view; running runs are unaffected."""
        require_capability(actor, Capability.WORKFLOWS_MANAGE)
        model = await self.get_model(workflow_id, version)

        model.soft_delete()
        for node in model.nodes:
            node.soft_delete()
        for edge in model.edges:
            edge.soft_delete()
        await self.db.flush()

        self.audit.record(
            self.db,
            AuditEventType.WORKFLOW_DELETED,
            actor_id=actor.id,
            workflow_id=workflow_id,
            definition_id=model.id,
            version=version,
        )
        return model
