"""
SLA Application DTOs
====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from deskflow.sla.domain import SLAPolicy, TicketSLA


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
SLAStatusStr = Literal["on_track", "at_risk", "breached"]


# ========== Request DTOs ==========

class SLAPolicyCreate(BaseModel):
    """Request model for creating an SLA policy."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    priority: PriorityStr
    response_time_minutes: int = Field(..., ge=1)
    resolution_time_minutes: int = Field(..., ge=1)
    business_hours_only: bool = True
    escalation_enabled: bool = True
    escalation_user_id: Optional[str] = None
    notify_before_minutes: int = Field(default=30, ge=0)
    is_active: bool = True


class SLAPolicyUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[PriorityStr] = None
    response_time_minutes: Optional[int] = Field(None, ge=1)
    resolution_time_minutes: Optional[int] = Field(None, ge=1)
    business_hours_only: Optional[bool] = None
    escalation_enabled: Optional[bool] = None
    escalation_user_id: Optional[str] = None
    notify_before_minutes: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def require_change(self) -> "SLAPolicyUpdate":
        if not self.model_fields_set:
            raise ValueError("Nothing to update")
        return self


# ========== Response DTOs ==========

class SLAPolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    name: str
    description: Optional[str] = None
    priority: PriorityStr
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool
    escalation_enabled: bool
    escalation_user_id: Optional[str] = None
    notify_before_minutes: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, policy: SLAPolicy) -> "SLAPolicyResponse":
        return cls(
            id=policy.id,
            name=policy.name,
            description=policy.description,
            priority=policy.priority,
            response_time_minutes=policy.response_time_minutes,
            resolution_time_minutes=policy.resolution_time_minutes,
            business_hours_only=policy.business_hours_only,
            escalation_enabled=policy.escalation_enabled,
            escalation_user_id=policy.escalation_user_id,
            notify_before_minutes=policy.notify_before_minutes,
            is_active=policy.is_active,
            created_at=policy.created_at,
            updated_at=policy.updated_at
        )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA state."""
    ticket_id: str
    policy_id: str
    status: SLAStatusStr
    response_deadline: datetime
    resolution_deadline: datetime
    response_breached: bool
    resolution_breached: bool
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    escalation_count: int = 0
    last_evaluated_at: Optional[datetime] = None
    policy: Optional[SLAPolicyResponse] = None

    @classmethod
    def from_domain(
        cls,
        state: TicketSLA,
        policy: Optional[SLAPolicy] = None
    ) -> "TicketSLAResponse":
        return cls(
            ticket_id=state.ticket_id,
            policy_id=state.policy_id,
            status=state.status,
            response_deadline=state.response_deadline,
            resolution_deadline=state.resolution_deadline,
            response_breached=state.response_breached,
            resolution_breached=state.resolution_breached,
            first_response_at=state.first_response_at,
            resolved_at=state.resolved_at,
            escalation_count=state.escalation_count,
            last_evaluated_at=state.last_evaluated_at,
            policy=SLAPolicyResponse.from_domain(policy) if policy else None
        )


class SLAStatsResponse(BaseModel):
    """Response model for SLA statistics."""
    active_total: int
    on_track: int
    at_risk: int
    breached: int
    response_breached: int
    resolution_breached: int
    total_resolved: int
    resolved_within_deadline: int
    compliance_rate: float = Field(..., description="Percentage resolved within deadline")
