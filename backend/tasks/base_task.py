"""
Base executor interface for all node types.

Every node type (email, sms, delay) is handled by a NodeExecutor subclass
that implements execute(). Executors never touch the database: they get a
read-only ExecutionContext and either return a NodeResult or raise a
TransientExecutionError / PermanentExecutionError.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from core.exceptions import ExecutionError
from workflow.definition import NodeTemplate, RunContext

logger = structlog.get_logger(__name__)


@dataclass
class ExecutionContext:
    """Everything an executor may read for one attempt."""

    run: RunContext
    idempotency_key: str
    now: datetime
    scheduled_at: Optional[datetime] = None

    def namespace(self) -> Dict[str, Any]:
        return self.run.namespace()


@dataclass
class NodeResult:
    """Standardized result from a node execution."""

    output: Dict[str, Any] = field(default_factory=dict)
    provider_message_id: Optional[str] = None
    input_context: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.output)
        if self.provider_message_id is not None:
            data.setdefault("provider_message_id", self.provider_message_id)
        return data


class NodeExecutor(ABC):
    """
    Abstract base class for node executors.

    Subclasses must implement:
    - execute(node, context, attempt) -> NodeResult
    - node_type (class attribute)
    """

    node_type: str = "base"
    display_name: str = "Base Executor"

    @abstractmethod
    async def execute(
        self,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        """
        Execute one attempt of a node.

        Args:
            node: The node template (type + template body)
            context: Run payload, predecessor results, idempotency key, clock
            attempt: 1-based attempt number

        Returns:
            NodeResult with output

        Raises:
            TransientExecutionError: retryable failure
            PermanentExecutionError: non-retryable failure
        """
        pass

    async def run(
        self,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        """
        Run the executor with timing and logging.

        This is the entry point called by the retry manager. Errors are
        logged and re-raised so the caller can classify them.
        """
        start = time.monotonic()
        log = logger.bind(
            node_type=self.node_type,
            node_id=node.id,
            run_id=context.run.run_id,
            attempt=attempt,
        )
        try:
            log.debug("Executor starting")
            result = await self.execute(node, context, attempt)
            result.duration_ms = (time.monotonic() - start) * 1000
            log.info("Executor completed", duration_ms=round(result.duration_ms, 2))
            return result

        except ExecutionError as e:
            log.warning(
                "Executor failed",
                error=e.message,
                transient=e.transient,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise
