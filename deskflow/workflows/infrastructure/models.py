"""
Workflow Infrastructure Models
==============================

SQLAlchemy ORM models for the workflow module.

These are the database representations of our domain entities.
Conditions and actions are stored as JSON in their wire format.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from deskflow.infrastructure.database import Base
from deskflow.config import ExecutionStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRuleModel(Base):
    """
    Database model for WorkflowRule entity.

    Maps to the 'workflow_rules' table.
    """
    __tablename__ = "workflow_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Event selection
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Rule body
    conditions: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    actions: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class WorkflowExecutionModel(Base):
    """
    Database model for workflow execution history.

    Maps to the 'workflow_executions' table.
    """
    __tablename__ = "workflow_executions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    workflow_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ExecutionStatus.COMPLETED)
    result: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AssignmentRuleModel(Base):
    """
    Database model for AssignmentRule entity.

    Maps to the 'assignment_rules' table. ``rr_cursor`` is the persisted
    round-robin position and is only ever advanced atomically.
    """
    __tablename__ = "assignment_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assignment_type: Mapped[str] = mapped_column(String(30), nullable=False)

    conditions: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    target_users: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    required_skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rr_cursor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
