"""Database models for the notification workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import WorkflowDefinitionModel
from db.models.node_template import NodeTemplateModel
from db.models.workflow_edge import WorkflowEdgeModel
from db.models.workflow_run import WorkflowRunModel
from db.models.node_execution import NodeExecutionModel
from db.models.step_execution_log import StepExecutionLogModel
from db.models.audit_log import AuditLogEntry

__all__ = [
    "WorkflowDefinitionModel",
    "NodeTemplateModel",
    "WorkflowEdgeModel",
    "WorkflowRunModel",
    "NodeExecutionModel",
    "StepExecutionLogModel",
    "AuditLogEntry",
]
