"""
Workflow Infrastructure Layer
=============================

Infrastructure implementations for workflow automation:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer (rules, execution history, cursors)
"""

from deskflow.workflows.infrastructure.models import (
    WorkflowRuleModel,
    WorkflowExecutionModel,
    AssignmentRuleModel,
)
from deskflow.workflows.infrastructure.repositories import (
    SQLAlchemyWorkflowRuleRepository,
    SQLAlchemyAssignmentRuleRepository,
    SQLAlchemyRoundRobinCursor,
    SQLAlchemyExecutionLogRepository,
)

__all__ = [
    "WorkflowRuleModel",
    "WorkflowExecutionModel",
    "AssignmentRuleModel",
    "SQLAlchemyWorkflowRuleRepository",
    "SQLAlchemyAssignmentRuleRepository",
    "SQLAlchemyRoundRobinCursor",
    "SQLAlchemyExecutionLogRepository",
]
