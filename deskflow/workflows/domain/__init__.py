"""
Workflow Domain Layer
=====================

Domain layer for workflow automation and auto-assignment.

Contains:
- Entities: WorkflowRule, AssignmentRule, TechnicianWorkload, execution reports
- Value Objects: Condition, the Action tagged union
- Domain Services: ConditionEvaluator, assignment selection helpers

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from deskflow.workflows.domain.entities import (
    WorkflowRule,
    AssignmentRule,
    TechnicianWorkload,
    ActionOutcome,
    RuleOutcome,
    AssignmentOutcome,
    WorkflowExecution,
    ExecutionReport,
)
from deskflow.workflows.domain.value_objects import (
    Condition,
    Action,
    AssignAction,
    AssignParams,
    ChangeStatusAction,
    ChangeStatusParams,
    ChangePriorityAction,
    ChangePriorityParams,
    AddCommentAction,
    AddCommentParams,
    SendNotificationAction,
    SendWhatsAppAction,
    MessageParams,
    MUTATING_ACTION_TYPES,
    ConditionEvaluator,
    parse_conditions,
    parse_actions,
    dump_conditions,
    dump_actions,
)

__all__ = [
    # Entities
    "WorkflowRule",
    "AssignmentRule",
    "TechnicianWorkload",
    "ActionOutcome",
    "RuleOutcome",
    "AssignmentOutcome",
    "WorkflowExecution",
    "ExecutionReport",
    # Value Objects & Services
    "Condition",
    "Action",
    "AssignAction",
    "AssignParams",
    "ChangeStatusAction",
    "ChangeStatusParams",
    "ChangePriorityAction",
    "ChangePriorityParams",
    "AddCommentAction",
    "AddCommentParams",
    "SendNotificationAction",
    "SendWhatsAppAction",
    "MessageParams",
    "MUTATING_ACTION_TYPES",
    "ConditionEvaluator",
    "parse_conditions",
    "parse_actions",
    "dump_conditions",
    "dump_actions",
]
