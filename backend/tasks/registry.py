"""
Executor Registry: maps node types to their executor instances.
"""

from typing import Dict, Optional

from core.exceptions import PermanentExecutionError
from tasks.base_task import NodeExecutor


class ExecutorRegistry:
    """Central registry for node executors, keyed by node type."""

    def __init__(self):
        self._executors: Dict[str, NodeExecutor] = {}

    def register(self, executor: NodeExecutor, node_type: Optional[str] = None):
        """Register an executor, by default under its own node_type."""
        self._executors[node_type or executor.node_type] = executor

    def get(self, node_type: str) -> Optional[NodeExecutor]:
        """Get the executor for a node type."""
        return self._executors.get(node_type)

    def resolve(self, node_type: str) -> NodeExecutor:
        """Get the executor for a node type or fail the node permanently."""
        executor = self.get(node_type)
        if executor is None:
            raise PermanentExecutionError(f"No executor registered for node type '{node_type}'")
        return executor

    def list_types(self) -> list[str]:
        return sorted(self._executors)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._executors


def build_default_registry(email_provider, sms_provider, settings=None) -> ExecutorRegistry:
    """Registry with the built-in email, sms and delay executors."""
    from tasks.implementations.delay_task import DelayExecutor
    from tasks.implementations.email_task import EmailExecutor
    from tasks.implementations.sms_task import SmsExecutor

    from_address = settings.EMAIL_FROM_ADDRESS if settings else None
    sender_id = settings.SMS_SENDER_ID if settings else None

    registry = ExecutorRegistry()
    registry.register(EmailExecutor(email_provider, from_address=from_address))
    registry.register(SmsExecutor(sms_provider, sender_id=sender_id))
    registry.register(DelayExecutor())
    return registry
