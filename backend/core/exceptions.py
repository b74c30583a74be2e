"""Custom exceptions for the notification workflow engine."""

from typing import Any, Optional


class WorkflowEngineError(Exception):
    """Base exception for the notification workflow engine."""

    code = "error"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class UnauthorizedError(WorkflowEngineError):
    """Unauthorized access exception."""

    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize UnauthorizedError with 401 status code."""
        super().__init__(message, 401)


class ForbiddenError(WorkflowEngineError):
    """Forbidden access exception."""

    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    code = "validation_error"

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    code = "conflict"

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class InvalidStateTransition(ConflictError):
    """A run or node execution was asked to move to a state it cannot reach."""

    code = "invalid_state_transition"

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal {entity} transition {current} -> {target}")


class InfrastructureError(WorkflowEngineError):
    """Store or queue unavailable. Safe to retry."""

    code = "infrastructure_unavailable"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message, 503)


# ─── Definition errors ─────────────────────────────────────────

class GraphError(ValidationError):
    """Base class for structural problems in a workflow definition."""

    code = "graph_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class CycleDetected(GraphError):
    code = "cycle_detected"


class UnknownNodeType(GraphError):
    code = "unknown_node_type"


class MultipleOrZeroEntryNodes(GraphError):
    code = "multiple_or_zero_entry_nodes"


class DanglingEdge(GraphError):
    code = "dangling_edge"


# ─── Executor errors ───────────────────────────────────────────

class ExecutionError(Exception):
    """Raised by node executors. Never surfaced to HTTP callers."""

    transient = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TransientExecutionError(ExecutionError):
    """Retryable failure: provider timeout, 5xx, rate limit."""

    transient = True


class PermanentExecutionError(ExecutionError):
    """Non-retryable failure: bad template, invalid recipient, 4xx."""
