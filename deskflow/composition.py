"""
Service Composition
===================

Wires the application services onto one database session. Used by the
route dependencies, the SLA sweep job and the maintenance scripts so they
all run the same object graph.
"""

from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from deskflow.helpdesk.infrastructure import (
    DatabaseMessagingTransport,
    SQLAlchemyEntityStore,
    notification_client,
)
from deskflow.infrastructure.database import get_session, get_session_maker
from deskflow.sla.application import SLAPolicyService, SLATracker
from deskflow.sla.infrastructure import SQLAlchemySLAPolicyRepository, SQLAlchemyTicketSLARepository
from deskflow.sla.infrastructure.external import config_manager
from deskflow.workflows.application import (
    ActionExecutor,
    AssignmentService,
    AssignmentStrategyResolver,
    AutomationService,
    IEntityStore,
    WorkflowDispatcher,
)
from deskflow.workflows.application.configuration import AssignmentRuleService, WorkflowRuleService
from deskflow.workflows.infrastructure import (
    SQLAlchemyAssignmentRuleRepository,
    SQLAlchemyExecutionLogRepository,
    SQLAlchemyRoundRobinCursor,
    SQLAlchemyWorkflowRuleRepository,
)


@dataclass
class AutomationContainer:
    """Application services sharing one session."""
    workflow_rules: WorkflowRuleService
    assignment_rules: AssignmentRuleService
    sla_policies: SLAPolicyService
    assignment: AssignmentService
    dispatcher: WorkflowDispatcher
    sla_tracker: SLATracker
    automation: AutomationService
    entity_store: IEntityStore


def build_container(session: AsyncSession) -> AutomationContainer:
    """Build every service over ``session``."""
    entity_store = SQLAlchemyEntityStore(session)
    transport = DatabaseMessagingTransport(session, gateway=notification_client)

    workflow_repo = SQLAlchemyWorkflowRuleRepository(session)
    assignment_repo = SQLAlchemyAssignmentRuleRepository(session)
    execution_log = SQLAlchemyExecutionLogRepository(session)
    policy_repo = SQLAlchemySLAPolicyRepository(session)
    state_repo = SQLAlchemyTicketSLARepository(session)

    # The cursor commits in its own short transaction
    resolver = AssignmentStrategyResolver(SQLAlchemyRoundRobinCursor(get_session_maker()))
    assignment = AssignmentService(assignment_repo, entity_store, resolver)
    executor = ActionExecutor(entity_store, transport, assignment_service=assignment)
    dispatcher = WorkflowDispatcher(workflow_repo, executor, entity_store, execution_log=execution_log)

    sla_tracker = SLATracker(
        policy_repo,
        state_repo,
        entity_store,
        executor=executor,
        business_hours=config_manager.business_hours
    )
    automation = AutomationService(
        dispatcher,
        entity_store,
        assignment_service=assignment,
        sla_tracker=sla_tracker
    )

    return AutomationContainer(
        workflow_rules=WorkflowRuleService(workflow_repo, execution_log),
        assignment_rules=AssignmentRuleService(assignment_repo),
        sla_policies=SLAPolicyService(policy_repo),
        assignment=assignment,
        dispatcher=dispatcher,
        sla_tracker=sla_tracker,
        automation=automation,
        entity_store=entity_store
    )


async def get_container(session: AsyncSession = Depends(get_session)) -> AutomationContainer:
    """FastAPI dependency; the session commits when the request succeeds."""
    return build_container(session)
