"""
SLA Domain Entities
===================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from deskflow.config import SLAStatus, VALID_PRIORITIES
from deskflow.core import ConfigurationException


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SLAPolicy:
    """
    Response/resolution budgets for tickets of one priority.

    When several active policies share a priority, the most recently
    created one applies.
    """

    id: str
    name: str
    priority: str
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool = True
    escalation_enabled: bool = False
    escalation_user_id: Optional[str] = None
    notify_before_minutes: int = 30
    is_active: bool = True
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def validate(self) -> None:
        if self.priority not in VALID_PRIORITIES:
            raise ConfigurationException(f"Unknown priority '{self.priority}'")
        if self.response_time_minutes < 1 or self.resolution_time_minutes < 1:
            raise ConfigurationException(
                "SLA time budgets must be at least one minute",
                {"policy": self.name}
            )
        if self.notify_before_minutes < 0:
            raise ConfigurationException("notify_before_minutes cannot be negative")

    @property
    def can_escalate(self) -> bool:
        return self.escalation_enabled and bool(self.escalation_user_id)


@dataclass
class TicketSLA:
    """
    Live SLA state of one ticket.

    Derived from the ticket and its policy; owned by the SLA tracker.
    Once ``resolved_at`` is set the state is frozen for reporting.
    """

    ticket_id: str
    policy_id: str
    response_deadline: datetime
    resolution_deadline: datetime
    status: str = SLAStatus.ON_TRACK
    response_breached: bool = False
    resolution_breached: bool = False
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    last_escalated_status: Optional[str] = None
    escalation_count: int = 0
    last_evaluated_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_frozen(self) -> bool:
        return self.resolved_at is not None

    @property
    def resolved_within_deadline(self) -> bool:
        return self.is_frozen and not self.resolution_breached

    def to_dict(self) -> dict:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "policy_id": self.policy_id,
            "status": self.status,
            "response_deadline": iso(self.response_deadline),
            "resolution_deadline": iso(self.resolution_deadline),
            "response_breached": self.response_breached,
            "resolution_breached": self.resolution_breached,
            "first_response_at": iso(self.first_response_at),
            "resolved_at": iso(self.resolved_at),
            "last_escalated_status": self.last_escalated_status,
            "escalation_count": self.escalation_count,
            "last_evaluated_at": iso(self.last_evaluated_at),
        }


@dataclass
class SLAComplianceStats:
    """Aggregate SLA figures for the statistics endpoint."""

    active_total: int = 0
    on_track: int = 0
    at_risk: int = 0
    breached: int = 0
    response_breached: int = 0
    resolution_breached: int = 0
    total_resolved: int = 0
    resolved_within_deadline: int = 0

    @property
    def compliance_rate(self) -> float:
        """Percentage of resolved tickets that met the resolution deadline."""
        if self.total_resolved == 0:
            return 100.0
        return round(self.resolved_within_deadline / self.total_resolved * 100, 2)

    def to_dict(self) -> dict:
        return {
            "active_total": self.active_total,
            "on_track": self.on_track,
            "at_risk": self.at_risk,
            "breached": self.breached,
            "response_breached": self.response_breached,
            "resolution_breached": self.resolution_breached,
            "total_resolved": self.total_resolved,
            "resolved_within_deadline": self.resolved_within_deadline,
            "compliance_rate": self.compliance_rate,
        }
