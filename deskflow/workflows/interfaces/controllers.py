"""
Workflow Controllers (API Routes)
=================================

FastAPI routes for workflow templates, execution history, assignment
rules and lifecycle event ingestion.

Controllers are thin - they delegate to application services.
"""

from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from deskflow.composition import AutomationContainer, get_container
from deskflow.config import UserRole
from deskflow.core import ResourceNotFoundException, ValidationException
from deskflow.shared.api.deps import Actor, require_admin, require_roles
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.application import EntityEvent
from deskflow.workflows.application.dto import (
    AssignmentRuleCreate,
    AssignmentRuleResponse,
    AssignmentRuleUpdate,
    AssignmentStatsResponse,
    EntityEventRequest,
    EntityEventResponse,
    ExecutionStatusStr,
    WorkflowExecutionResponse,
    WorkflowTemplateCreate,
    WorkflowTemplateResponse,
    WorkflowTemplateUpdate,
    WorkflowTestRequest,
    WorkflowTestResponse,
)
from deskflow.workflows.domain import AssignmentRule, WorkflowRule

logger = get_logger(__name__)
router = APIRouter(prefix="/workflows", tags=["Workflows"])


# ========== Example payloads for Swagger ==========

TEMPLATE_CREATE_EXAMPLE = {
    "name": "Escalate critical network tickets",
    "entity_type": "ticket",
    "trigger": "created",
    "priority": 10,
    "conditions": [
        {"field": "priority", "operator": "equals", "value": "critical"},
        {"field": "category", "operator": "in", "value": "network,vpn"}
    ],
    "actions": [
        {"type": "change_status", "params": {"status": "in_progress"}},
        {"type": "send_notification", "params": {
            "message": "Critical ticket {title} needs attention",
            "recipients": ["lead-1"]
        }}
    ]
}

EVENT_RESPONSE_EXAMPLE = {
    "entity_type": "ticket",
    "entity_id": "T-1001",
    "kind": "updated",
    "triggers": ["status_changed", "updated"],
    "reports": [],
    "assignment": None,
    "sla": None,
    "errors": []
}


def _changes(request: BaseModel, nullable: Iterable[str] = ("description",)) -> Dict[str, Any]:
    """Explicitly sent fields of a partial update."""
    changes = {
        key: getattr(request, key)
        for key in request.model_fields_set
        if getattr(request, key) is not None or key in nullable
    }
    if not changes:
        raise ValidationException("Nothing to update")
    return changes


# ========== Workflow Templates ==========

@router.get(
    "/templates",
    response_model=List[WorkflowTemplateResponse],
    summary="List workflow templates",
    description="All workflow rules, highest priority first."
)
async def list_templates(
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rules = await container.workflow_rules.list_rules()
    return [WorkflowTemplateResponse.from_domain(rule) for rule in rules]


@router.get(
    "/templates/{template_id}",
    response_model=WorkflowTemplateResponse,
    summary="Get a workflow template",
    description="Workflow rule with its 10 most recent executions.",
    responses={404: {"description": "Template not found"}}
)
async def get_template(
    template_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rule = await container.workflow_rules.get_rule(template_id)
    executions = await container.workflow_rules.recent_executions(template_id)
    return WorkflowTemplateResponse.from_domain(rule, executions)


@router.post(
    "/templates",
    response_model=WorkflowTemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow template",
    description="""
    Create a workflow rule.

    **Conditions** are ANDed; an empty list matches every entity.

    **Actions** run in declared order and at least one is required:
    `assign`, `change_status`, `change_priority`, `add_comment`,
    `send_notification`, `send_whatsapp`.

    Message templates may reference entity fields, e.g. `{title}`.
    """,
    responses={
        201: {"description": "Template created"},
        400: {"description": "Malformed rule (configuration error)"}
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TEMPLATE_CREATE_EXAMPLE}}}}
)
async def create_template(
    request: WorkflowTemplateCreate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rule = WorkflowRule(
        id="",
        name=request.name,
        description=request.description,
        entity_type=request.entity_type,
        trigger=request.trigger,
        conditions=request.conditions,
        actions=request.actions,
        priority=request.priority,
        is_active=request.is_active,
        created_by=actor.user_id
    )
    created = await container.workflow_rules.create_rule(rule)
    return WorkflowTemplateResponse.from_domain(created)


@router.put(
    "/templates/{template_id}",
    response_model=WorkflowTemplateResponse,
    summary="Update a workflow template"
)
async def update_template(
    template_id: str,
    request: WorkflowTemplateUpdate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    updated = await container.workflow_rules.update_rule(template_id, _changes(request))
    return WorkflowTemplateResponse.from_domain(updated)


@router.delete(
    "/templates/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow template"
)
async def delete_template(
    template_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    await container.workflow_rules.delete_rule(template_id)


@router.patch(
    "/templates/{template_id}/toggle",
    response_model=WorkflowTemplateResponse,
    summary="Activate or deactivate a workflow template"
)
async def toggle_template(
    template_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    toggled = await container.workflow_rules.toggle_rule(template_id)
    return WorkflowTemplateResponse.from_domain(toggled)


@router.post(
    "/templates/{template_id}/test",
    response_model=WorkflowTestResponse,
    summary="Dry-run a workflow template",
    description="""
    Evaluate the template's conditions against a stored entity
    (`entity_id`) or a supplied snapshot (`entity`). Nothing is executed;
    the response lists each condition's result and the actions that
    would run.
    """
)
async def test_template(
    template_id: str,
    request: WorkflowTestRequest,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rule = await container.workflow_rules.get_rule(template_id)

    snapshot = request.entity
    if snapshot is None:
        snapshot = await container.entity_store.get_entity(rule.entity_type, request.entity_id)
        if snapshot is None:
            raise ResourceNotFoundException(rule.entity_type, request.entity_id)

    return await container.dispatcher.dry_run(rule, snapshot, request.previous)


# ========== Execution History ==========

@router.get(
    "/executions",
    response_model=List[WorkflowExecutionResponse],
    summary="List workflow executions",
    description="Execution history, newest first."
)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Filter by workflow template id"),
    execution_status: Optional[ExecutionStatusStr] = Query(None, alias="status", description="Filter by outcome"),
    limit: int = Query(50, ge=1, le=500, description="Maximum rows"),
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    executions = await container.workflow_rules.list_executions(
        workflow_id=workflow_id,
        status=execution_status,
        limit=limit
    )
    return [WorkflowExecutionResponse.from_domain(e) for e in executions]


# ========== Assignment Rules ==========

@router.get(
    "/assignment-rules",
    response_model=List[AssignmentRuleResponse],
    summary="List assignment rules"
)
async def list_assignment_rules(
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rules = await container.assignment_rules.list_rules()
    return [AssignmentRuleResponse.from_domain(rule) for rule in rules]


@router.get(
    "/assignment-rules/{rule_id}",
    response_model=AssignmentRuleResponse,
    summary="Get an assignment rule"
)
async def get_assignment_rule(
    rule_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    return AssignmentRuleResponse.from_domain(await container.assignment_rules.get_rule(rule_id))


@router.post(
    "/assignment-rules",
    response_model=AssignmentRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an assignment rule",
    description="""
    **Strategies**:
    - `round_robin`: cycles through `target_users` (persisted cursor)
    - `specific_user`: like round_robin over the available `target_users`
    - `least_busy`: fewest active tickets, ties by user id
    - `skill_based`: technicians holding every `required_skills` entry
    - `location_based`: technicians at `location`
    """
)
async def create_assignment_rule(
    request: AssignmentRuleCreate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    rule = AssignmentRule(id="", **request.model_dump(exclude={"conditions"}), conditions=request.conditions)
    created = await container.assignment_rules.create_rule(rule)
    return AssignmentRuleResponse.from_domain(created)


@router.put(
    "/assignment-rules/{rule_id}",
    response_model=AssignmentRuleResponse,
    summary="Update an assignment rule"
)
async def update_assignment_rule(
    rule_id: str,
    request: AssignmentRuleUpdate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    changes = _changes(request, nullable=("description", "location"))
    updated = await container.assignment_rules.update_rule(rule_id, changes)
    return AssignmentRuleResponse.from_domain(updated)


@router.delete(
    "/assignment-rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an assignment rule"
)
async def delete_assignment_rule(
    rule_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    await container.assignment_rules.delete_rule(rule_id)


@router.patch(
    "/assignment-rules/{rule_id}/toggle",
    response_model=AssignmentRuleResponse,
    summary="Activate or deactivate an assignment rule"
)
async def toggle_assignment_rule(
    rule_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    return AssignmentRuleResponse.from_domain(await container.assignment_rules.toggle_rule(rule_id))


@router.get(
    "/assignment-stats",
    response_model=AssignmentStatsResponse,
    summary="Assignment statistics",
    description="Rule counts and per-technician workload (fewest active tickets first)."
)
async def get_assignment_stats(
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.TECHNICIAN)),
    container: AutomationContainer = Depends(get_container)
):
    return await container.assignment.get_stats()


# ========== Lifecycle Events ==========

@router.post(
    "/events",
    response_model=EntityEventResponse,
    summary="Report an entity lifecycle event",
    description="""
    Called by the helpdesk CRUD layer after it committed a change.

    - `created`: starts SLA tracking, runs auto-assignment (tickets) and
      dispatches `created` (then `assigned` if someone was assigned)
    - `updated`: derives `status_changed`, `priority_changed`, `assigned`
      and `updated` from `previous` vs the current entity
    - `responded`: records the ticket's first response

    Automation failures are reported in the body; the entity change
    itself is never rolled back.
    """,
    responses={200: {"content": {"application/json": {"example": EVENT_RESPONSE_EXAMPLE}}}}
)
async def report_event(
    request: EntityEventRequest,
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.SYSTEM)),
    container: AutomationContainer = Depends(get_container)
):
    result = await container.automation.handle_event(EntityEvent(
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        kind=request.kind,
        previous=request.previous,
        current=request.current
    ))

    if result.errors:
        logger.warning(
            "Lifecycle event finished with automation errors",
            extra={"entity_id": request.entity_id, "kind": request.kind, "errors": result.errors}
        )

    return result.to_dict()


# Export router for inclusion in main app
workflows_router = router
