"""Constants and enums for the notification workflow engine."""

from enum import Enum


class NodeType(str, Enum):
    """Kinds of node a workflow definition may contain."""

    EMAIL = "email"
    SMS = "sms"
    DELAY = "delay"


class WorkflowStatus(str, Enum):
    """Lifecycle of a workflow definition version."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class RunStatus(str, Enum):
    """Workflow run status."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NodeExecutionStatus(str, Enum):
    """Per-node, per-run execution status."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_RUN_STATUSES = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
})

TERMINAL_NODE_STATUSES = frozenset({
    NodeExecutionStatus.SUCCEEDED,
    NodeExecutionStatus.FAILED,
    NodeExecutionStatus.SKIPPED,
})


class ErrorKind(str, Enum):
    """Classification of an executor failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class AuditEventType(str, Enum):
    """Audit log event types."""

    RUN_CREATED = "RUN_CREATED"
    RUN_RUNNING = "RUN_RUNNING"
    RUN_PAUSED = "RUN_PAUSED"
    RUN_RESUMED = "RUN_RESUMED"
    RUN_COMPLETED = "RUN_COMPLETED"
    RUN_FAILED = "RUN_FAILED"
    RUN_CANCELLED = "RUN_CANCELLED"
    NODE_STATUS_CHANGED = "NODE_STATUS_CHANGED"
    NODE_RETRY_SCHEDULED = "NODE_RETRY_SCHEDULED"
    NODE_ATTEMPTS_EXHAUSTED = "NODE_ATTEMPTS_EXHAUSTED"
    NODE_FAILED = "NODE_FAILED"
    TRIGGER_DUPLICATE = "TRIGGER_DUPLICATE"
    WORKFLOW_PUBLISHED = "WORKFLOW_PUBLISHED"
    WORKFLOW_DELETED = "WORKFLOW_DELETED"


class Capability(str, Enum):
    """Capabilities checked before privileged operations."""

    TRIGGER_EXECUTE = "trigger.execute"
    NODES_EXECUTE = "nodes.execute"
    WORKFLOWS_MANAGE = "workflows.manage"
    RUNS_READ = "runs.read"
    RUNS_CANCEL = "runs.cancel"
    AUDIT_READ = "audit.read"


class ActorRole(str, Enum):
    """Actor roles known to the engine."""

    TRIGGER_OPERATOR = "trigger_operator"
    WORKER_SERVICE = "worker_service"
    WORKFLOW_MANAGER = "workflow_manager"
    SYSTEM_ADMIN = "system_admin"


ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ActorRole.TRIGGER_OPERATOR.value: frozenset({
        Capability.TRIGGER_EXECUTE.value,
        Capability.RUNS_READ.value,
    }),
    ActorRole.WORKER_SERVICE.value: frozenset({
        Capability.NODES_EXECUTE.value,
    }),
    ActorRole.WORKFLOW_MANAGER.value: frozenset({
        "workflows.*",
        "runs.*",
        Capability.AUDIT_READ.value,
    }),
    ActorRole.SYSTEM_ADMIN.value: frozenset({"*"}),
}
