"""
SLA Infrastructure Repositories
===============================

Concrete implementations of the SLA repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
policies and per-ticket SLA state.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deskflow.config import Priority
from deskflow.core import RepositoryException
from deskflow.sla.application.services import ISLAPolicyRepository, ITicketSLARepository
from deskflow.sla.domain import SLAPolicy, TicketSLA
from deskflow.sla.infrastructure.models import SLAPolicyModel, TicketSLAModel


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Some backends hand timestamps back without tzinfo; they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _policy_to_domain(model: SLAPolicyModel) -> SLAPolicy:
    return SLAPolicy(
        id=str(model.id),
        name=model.name,
        description=model.description,
        priority=model.priority,
        response_time_minutes=model.response_time_minutes,
        resolution_time_minutes=model.resolution_time_minutes,
        business_hours_only=model.business_hours_only,
        escalation_enabled=model.escalation_enabled,
        escalation_user_id=model.escalation_user_id,
        notify_before_minutes=model.notify_before_minutes,
        is_active=model.is_active,
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at)
    )


def _state_to_domain(model: TicketSLAModel) -> TicketSLA:
    return TicketSLA(
        id=str(model.id),
        ticket_id=model.ticket_id,
        policy_id=str(model.policy_id),
        response_deadline=_aware(model.response_deadline),
        resolution_deadline=_aware(model.resolution_deadline),
        status=model.status,
        response_breached=model.response_breached,
        resolution_breached=model.resolution_breached,
        first_response_at=_aware(model.first_response_at),
        resolved_at=_aware(model.resolved_at),
        last_escalated_status=model.last_escalated_status,
        escalation_count=model.escalation_count,
        last_evaluated_at=_aware(model.last_evaluated_at),
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at)
    )


class SQLAlchemySLAPolicyRepository(ISLAPolicyRepository):
    """SQLAlchemy implementation of the SLA policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_all(self) -> List[SLAPolicy]:
        urgency = case(
            (SLAPolicyModel.priority == Priority.CRITICAL, 0),
            (SLAPolicyModel.priority == Priority.HIGH, 1),
            (SLAPolicyModel.priority == Priority.MEDIUM, 2),
            else_=3
        )
        stmt = select(SLAPolicyModel).order_by(urgency, SLAPolicyModel.created_at.desc())
        result = await self._session.execute(stmt)
        return [_policy_to_domain(m) for m in result.scalars().all()]

    async def list_active_for_priority(self, priority: str) -> List[SLAPolicy]:
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.priority == priority, SLAPolicyModel.is_active.is_(True))
            .order_by(SLAPolicyModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [_policy_to_domain(m) for m in result.scalars().all()]

    async def get(self, policy_id: str) -> Optional[SLAPolicy]:
        model = await self._get_model(policy_id)
        return _policy_to_domain(model) if model else None

    async def create(self, policy: SLAPolicy) -> SLAPolicy:
        model = SLAPolicyModel(
            id=_parse_uuid(policy.id) if policy.id else uuid4(),
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
        self._session.add(model)
        await self._session.flush()

        policy.id = str(model.id)
        return policy

    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        model = await self._get_model(policy.id)
        if not model:
            raise RepositoryException(f"SLA policy {policy.id} not found")

        model.name = policy.name
        model.description = policy.description
        model.priority = policy.priority
        model.response_time_minutes = policy.response_time_minutes
        model.resolution_time_minutes = policy.resolution_time_minutes
        model.business_hours_only = policy.business_hours_only
        model.escalation_enabled = policy.escalation_enabled
        model.escalation_user_id = policy.escalation_user_id
        model.notify_before_minutes = policy.notify_before_minutes
        model.is_active = policy.is_active
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return _policy_to_domain(model)

    async def delete(self, policy_id: str) -> bool:
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return False
        result = await self._session.execute(
            delete(SLAPolicyModel).where(SLAPolicyModel.id == policy_uuid)
        )
        return result.rowcount > 0

    async def count(self) -> int:
        result = await self._session.execute(select(func.count(SLAPolicyModel.id)))
        return result.scalar_one()

    async def _get_model(self, policy_id: str) -> Optional[SLAPolicyModel]:
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return None
        return await self._session.get(SLAPolicyModel, policy_uuid)


class SQLAlchemyTicketSLARepository(ITicketSLARepository):
    """SQLAlchemy implementation of the per-ticket SLA state repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_ticket(self, ticket_id: str) -> Optional[TicketSLA]:
        model = await self._get_model(ticket_id)
        return _state_to_domain(model) if model else None

    async def save(self, state: TicketSLA) -> TicketSLA:
        policy_uuid = _parse_uuid(state.policy_id)
        if policy_uuid is None:
            raise RepositoryException(f"Invalid SLA policy id: {state.policy_id}")

        model = await self._get_model(state.ticket_id)
        if model is None:
            model = TicketSLAModel(id=uuid4(), ticket_id=state.ticket_id, created_at=state.created_at)
            self._session.add(model)

        model.policy_id = policy_uuid
        model.response_deadline = state.response_deadline
        model.resolution_deadline = state.resolution_deadline
        model.status = state.status
        model.response_breached = state.response_breached
        model.resolution_breached = state.resolution_breached
        model.first_response_at = state.first_response_at
        model.resolved_at = state.resolved_at
        model.last_escalated_status = state.last_escalated_status
        model.escalation_count = state.escalation_count
        model.last_evaluated_at = state.last_evaluated_at
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        state.id = str(model.id)
        return state

    async def delete_by_ticket(self, ticket_id: str) -> bool:
        result = await self._session.execute(
            delete(TicketSLAModel).where(TicketSLAModel.ticket_id == ticket_id)
        )
        return result.rowcount > 0

    async def list_unfrozen(self) -> List[TicketSLA]:
        stmt = (
            select(TicketSLAModel)
            .where(TicketSLAModel.resolved_at.is_(None))
            .order_by(TicketSLAModel.resolution_deadline.asc())
        )
        result = await self._session.execute(stmt)
        return [_state_to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[TicketSLA]:
        result = await self._session.execute(select(TicketSLAModel))
        return [_state_to_domain(m) for m in result.scalars().all()]

    async def _get_model(self, ticket_id: str) -> Optional[TicketSLAModel]:
        stmt = select(TicketSLAModel).where(TicketSLAModel.ticket_id == ticket_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
