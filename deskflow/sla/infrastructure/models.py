"""
SLA Infrastructure Models
=========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from deskflow.infrastructure.database import Base
from deskflow.config import SLAStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SLAPolicyModel(Base):
    """
    Database model for SLAPolicy entity.

    Maps to the 'sla_policies' table.
    """
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Budgets
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Escalation
    escalation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notify_before_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketSLAModel(Base):
    """
    Database model for TicketSLA entity.

    Maps to the 'ticket_slas' table (one row per ticket).
    """
    __tablename__ = "ticket_slas"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    policy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Deadlines
    response_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolution_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # State
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SLAStatus.ON_TRACK, index=True)
    response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Milestones
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Escalation bookkeeping
    last_escalated_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    escalation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_evaluated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
