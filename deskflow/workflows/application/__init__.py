"""
Workflow Application Layer
==========================

Application services orchestrating workflow dispatch, action execution,
auto-assignment and the lifecycle facade.
"""

from deskflow.workflows.application.services import (
    IEntityStore,
    IMessagingTransport,
    IWorkflowRuleRepository,
    IAssignmentRuleRepository,
    IRoundRobinCursor,
    IExecutionLogRepository,
    ActionExecutor,
    WorkflowDispatcher,
    derive_triggers,
    render_template,
)
from deskflow.workflows.application.assignment import (
    AssignmentStrategyResolver,
    AssignmentService,
)
from deskflow.workflows.application.automation import (
    AutomationService,
    EntityEvent,
    EventKind,
    EventResult,
)

__all__ = [
    # Interfaces
    "IEntityStore",
    "IMessagingTransport",
    "IWorkflowRuleRepository",
    "IAssignmentRuleRepository",
    "IRoundRobinCursor",
    "IExecutionLogRepository",
    # Services
    "ActionExecutor",
    "WorkflowDispatcher",
    "AssignmentStrategyResolver",
    "AssignmentService",
    "AutomationService",
    # Events
    "EntityEvent",
    "EventKind",
    "EventResult",
    # Helpers
    "derive_triggers",
    "render_template",
]
