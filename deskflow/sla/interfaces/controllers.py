"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA policies, compliance statistics and per-ticket
SLA state.

Controllers are thin - they delegate to application services.
"""

from typing import List

from fastapi import APIRouter, Depends, status

from deskflow.composition import AutomationContainer, get_container
from deskflow.core import ResourceNotFoundException, ValidationException
from deskflow.shared.api.deps import Actor, get_actor, require_admin
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.sla.application import (
    SLAPolicyCreate,
    SLAPolicyResponse,
    SLAPolicyUpdate,
    SLAStatsResponse,
    TicketSLAResponse,
)
from deskflow.sla.domain import SLAPolicy

logger = get_logger(__name__)
router = APIRouter(prefix="/workflows", tags=["SLA"])


# ========== Example payloads for Swagger ==========

POLICY_CREATE_EXAMPLE = {
    "name": "Critical incidents",
    "priority": "critical",
    "response_time_minutes": 30,
    "resolution_time_minutes": 240,
    "business_hours_only": False,
    "escalation_enabled": True,
    "escalation_user_id": "lead-1",
    "notify_before_minutes": 30
}

STATS_RESPONSE_EXAMPLE = {
    "active_total": 12,
    "on_track": 9,
    "at_risk": 2,
    "breached": 1,
    "response_breached": 3,
    "resolution_breached": 2,
    "total_resolved": 40,
    "resolved_within_deadline": 38,
    "compliance_rate": 95.0
}


# ========== SLA Policies ==========

@router.get(
    "/sla-policies",
    response_model=List[SLAPolicyResponse],
    summary="List SLA policies",
    description="Policies ordered by priority urgency (critical first)."
)
async def list_policies(
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    policies = await container.sla_policies.list_policies()
    return [SLAPolicyResponse.from_domain(p) for p in policies]


@router.get(
    "/sla-policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Get an SLA policy"
)
async def get_policy(
    policy_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    return SLAPolicyResponse.from_domain(await container.sla_policies.get_policy(policy_id))


@router.post(
    "/sla-policies",
    response_model=SLAPolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA policy",
    description="""
    Response and resolution budgets for one ticket priority.

    With `business_hours_only` the minutes only count inside the configured
    business window (default Mon-Fri 09:00-17:00). When several active
    policies share a priority, the most recently created one applies.
    """,
    openapi_extra={"requestBody": {"content": {"application/json": {"example": POLICY_CREATE_EXAMPLE}}}}
)
async def create_policy(
    request: SLAPolicyCreate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    created = await container.sla_policies.create_policy(SLAPolicy(id="", **request.model_dump()))
    return SLAPolicyResponse.from_domain(created)


@router.put(
    "/sla-policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Update an SLA policy",
    description="Changes apply to tickets whose SLA starts after the update."
)
async def update_policy(
    policy_id: str,
    request: SLAPolicyUpdate,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    nullable = ("description", "escalation_user_id")
    changes = {
        key: getattr(request, key)
        for key in request.model_fields_set
        if getattr(request, key) is not None or key in nullable
    }
    if not changes:
        raise ValidationException("Nothing to update")

    updated = await container.sla_policies.update_policy(policy_id, changes)
    return SLAPolicyResponse.from_domain(updated)


@router.delete(
    "/sla-policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an SLA policy"
)
async def delete_policy(
    policy_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    await container.sla_policies.delete_policy(policy_id)


@router.patch(
    "/sla-policies/{policy_id}/toggle",
    response_model=SLAPolicyResponse,
    summary="Activate or deactivate an SLA policy"
)
async def toggle_policy(
    policy_id: str,
    actor: Actor = Depends(require_admin),
    container: AutomationContainer = Depends(get_container)
):
    return SLAPolicyResponse.from_domain(await container.sla_policies.toggle_policy(policy_id))


# ========== Monitoring ==========

@router.get(
    "/sla-stats",
    response_model=SLAStatsResponse,
    summary="SLA compliance statistics",
    description="""
    - `active_total`, `on_track`, `at_risk`, `breached`: tickets still tracked
    - `response_breached`, `resolution_breached`: all-time breach counts
    - `compliance_rate`: percentage of resolved tickets closed before their
      resolution deadline (100.0 when nothing has been resolved yet)
    """,
    responses={200: {"content": {"application/json": {"example": STATS_RESPONSE_EXAMPLE}}}}
)
async def get_sla_stats(
    actor: Actor = Depends(get_actor),
    container: AutomationContainer = Depends(get_container)
):
    stats = await container.sla_tracker.get_stats()
    return stats.to_dict()


@router.get(
    "/ticket-sla/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get a ticket's SLA state",
    responses={404: {"description": "Ticket has no SLA state"}}
)
async def get_ticket_sla(
    ticket_id: str,
    actor: Actor = Depends(get_actor),
    container: AutomationContainer = Depends(get_container)
):
    state = await container.sla_tracker.get_ticket_sla(ticket_id)
    try:
        policy = await container.sla_policies.get_policy(state.policy_id)
    except ResourceNotFoundException:
        # Policy deleted after tracking started
        policy = None
    return TicketSLAResponse.from_domain(state, policy)


# Export router for inclusion in main app
sla_router = router
