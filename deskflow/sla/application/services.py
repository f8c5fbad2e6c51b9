"""
SLA Application Services
========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from deskflow.config import (
    EntityType, SLAStatus, TERMINAL_TICKET_STATUSES, VALID_TICKET_STATUSES
)
from deskflow.core import ActionException, ResourceNotFoundException
from deskflow.shared.infrastructure.locks import KeyedLockRegistry, entity_locks
from deskflow.shared.infrastructure.logging import get_logger, log_latency
from deskflow.sla.domain import (
    BusinessHours, SLACalculator, SLAComplianceStats, SLAPolicy, TicketSLA
)
from deskflow.workflows.application.services import ActionExecutor, IEntityStore
from deskflow.workflows.domain import MessageParams, SendNotificationAction

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def list_all(self) -> List[SLAPolicy]:
        """All policies, most urgent priority first."""

    @abstractmethod
    async def list_active_for_priority(self, priority: str) -> List[SLAPolicy]:
        """Active policies for ``priority``, most recently created first."""

    @abstractmethod
    async def get(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get a policy by id."""

    @abstractmethod
    async def create(self, policy: SLAPolicy) -> SLAPolicy:
        """Persist a new policy."""

    @abstractmethod
    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        """Persist changes to an existing policy."""

    @abstractmethod
    async def delete(self, policy_id: str) -> bool:
        """Delete a policy; False when it did not exist."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored policies."""


class ITicketSLARepository(ABC):
    """Interface for per-ticket SLA state."""

    @abstractmethod
    async def get_by_ticket(self, ticket_id: str) -> Optional[TicketSLA]:
        """SLA state of a ticket, if tracked."""

    @abstractmethod
    async def save(self, state: TicketSLA) -> TicketSLA:
        """Insert or update the state (one per ticket)."""

    @abstractmethod
    async def delete_by_ticket(self, ticket_id: str) -> bool:
        """Stop tracking a ticket."""

    @abstractmethod
    async def list_unfrozen(self) -> List[TicketSLA]:
        """States of tickets that have not been resolved."""

    @abstractmethod
    async def list_all(self) -> List[TicketSLA]:
        """Every stored state (used for statistics)."""


# Only one sweep may run at a time in this process
sweep_lock = asyncio.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Application Services ==========

class SLATracker:
    """
    Maintains per-ticket SLA state.

    Deadlines are computed once (on creation or priority change) and
    persisted; the periodic sweep recomputes status from the stored
    deadlines, so a restart loses nothing.
    """

    def __init__(
        self,
        policy_repository: ISLAPolicyRepository,
        state_repository: ITicketSLARepository,
        entity_store: IEntityStore,
        executor: Optional[ActionExecutor] = None,
        business_hours: Optional[Callable[[], BusinessHours]] = None,
        clock: Callable[[], datetime] = _utcnow,
        lock: Optional[asyncio.Lock] = None,
        locks: Optional[KeyedLockRegistry] = None
    ):
        self._policy_repo = policy_repository
        self._state_repo = state_repository
        self._entity_store = entity_store
        self._executor = executor
        self._business_hours = business_hours or BusinessHours
        self._clock = clock
        self._sweep_lock = lock or sweep_lock
        self._locks = locks or entity_locks

    # ----- policy selection & deadlines -----

    async def select_policy(self, priority: str) -> Optional[SLAPolicy]:
        """Active policy for a priority; the newest wins a tie."""
        policies = await self._policy_repo.list_active_for_priority(priority)
        if not policies:
            return None
        return max(policies, key=lambda p: p.created_at)

    def _deadlines(self, policy: SLAPolicy, start: datetime):
        hours = self._business_hours()
        response = SLACalculator.calculate_deadline(
            start, policy.response_time_minutes, policy.business_hours_only, hours
        )
        resolution = SLACalculator.calculate_deadline(
            start, policy.resolution_time_minutes, policy.business_hours_only, hours
        )
        return response, resolution

    # ----- lifecycle hooks -----

    async def start_tracking(self, ticket: Dict[str, Any]) -> Optional[TicketSLA]:
        """
        Create the SLA state for a new ticket.

        Returns the existing state if the ticket is already tracked, or
        None when no active policy matches its priority.
        """
        ticket_id = str(ticket["id"])
        existing = await self._state_repo.get_by_ticket(ticket_id)
        if existing is not None:
            return existing

        policy = await self.select_policy(ticket.get("priority"))
        if policy is None:
            logger.info(
                "No SLA policy for ticket priority",
                extra={"ticket_id": ticket_id, "priority": ticket.get("priority")}
            )
            return None

        now = self._clock()
        response_deadline, resolution_deadline = self._deadlines(policy, now)
        state = TicketSLA(
            ticket_id=ticket_id,
            policy_id=policy.id,
            response_deadline=response_deadline,
            resolution_deadline=resolution_deadline,
            status=SLAStatus.ON_TRACK,
            last_evaluated_at=now
        )
        state = await self._state_repo.save(state)

        logger.info(
            "SLA tracking started",
            extra={
                "ticket_id": ticket_id,
                "policy_id": policy.id,
                "response_deadline": response_deadline.isoformat(),
                "resolution_deadline": resolution_deadline.isoformat(),
            }
        )
        return state

    async def record_first_response(self, ticket_id: str) -> Optional[TicketSLA]:
        """Stamp the first response once; a late response marks the state breached."""
        state = await self._state_repo.get_by_ticket(ticket_id)
        if state is None or state.is_frozen or state.first_response_at is not None:
            return state

        now = self._clock()
        state.first_response_at = now
        if now > state.response_deadline:
            state.response_breached = True
            return await self._transition(state, SLAStatus.BREACHED, now)

        return await self._state_repo.save(state)

    async def on_priority_changed(self, ticket: Dict[str, Any]) -> Optional[TicketSLA]:
        """
        Reselect the policy and restart both deadlines from now.

        Progress already made is not carried over. A priority without a
        policy stops tracking.
        """
        ticket_id = str(ticket["id"])
        state = await self._state_repo.get_by_ticket(ticket_id)
        if state is not None and state.is_frozen:
            return state

        policy = await self.select_policy(ticket.get("priority"))
        if policy is None:
            if state is not None:
                await self._state_repo.delete_by_ticket(ticket_id)
                logger.info(
                    "SLA tracking dropped after priority change",
                    extra={"ticket_id": ticket_id, "priority": ticket.get("priority")}
                )
            return None

        if state is None:
            return await self.start_tracking(ticket)

        now = self._clock()
        state.policy_id = policy.id
        state.response_deadline, state.resolution_deadline = self._deadlines(policy, now)
        state.status = SLAStatus.ON_TRACK
        state.response_breached = False
        state.resolution_breached = False
        state.last_escalated_status = None
        state.last_evaluated_at = now
        state = await self._state_repo.save(state)

        logger.info(
            "SLA deadlines recomputed after priority change",
            extra={"ticket_id": ticket_id, "policy_id": policy.id, "priority": ticket.get("priority")}
        )
        return state

    async def on_ticket_closed(self, ticket: Dict[str, Any]) -> Optional[TicketSLA]:
        """Stamp the resolution and freeze the state for reporting."""
        ticket_id = str(ticket["id"])
        state = await self._state_repo.get_by_ticket(ticket_id)
        if state is None or state.is_frozen:
            return state

        now = self._clock()
        state.resolved_at = now
        state.last_evaluated_at = now
        if now > state.resolution_deadline:
            state.resolution_breached = True
            state.status = SLACalculator.escalate_status(state.status, SLAStatus.BREACHED)
        state = await self._state_repo.save(state)

        logger.info(
            "SLA frozen on closure",
            extra={
                "ticket_id": ticket_id,
                "status": state.status,
                "resolution_breached": state.resolution_breached,
            }
        )
        return state

    # ----- periodic sweep -----

    async def sweep(self) -> Optional[Dict[str, int]]:
        """
        Re-evaluate every unfrozen SLA state.

        Returns a summary, or None when a previous sweep is still running
        (the tick is skipped, not queued).
        """
        if self._sweep_lock.locked():
            logger.warning("SLA sweep still running, skipping this tick")
            return None

        async with self._sweep_lock:
            summary = {"evaluated": 0, "transitions": 0, "escalations": 0, "frozen": 0, "errors": 0}

            with log_latency(logger, "sla_sweep"):
                states = await self._state_repo.list_unfrozen()
                for state in states:
                    try:
                        async with self._locks.hold((EntityType.TICKET, state.ticket_id)):
                            await self._sweep_one(state, summary)
                    except Exception as e:
                        summary["errors"] += 1
                        logger.error(
                            "SLA evaluation failed",
                            extra={"ticket_id": state.ticket_id, "error": str(e)}
                        )

            logger.info("SLA sweep summary", extra=summary)
            return summary

    async def _sweep_one(self, state: TicketSLA, summary: Dict[str, int]) -> None:
        ticket = await self._entity_store.get_entity(EntityType.TICKET, state.ticket_id)
        if ticket is None:
            await self._state_repo.delete_by_ticket(state.ticket_id)
            return

        if ticket.get("status") in TERMINAL_TICKET_STATUSES:
            await self.on_ticket_closed(ticket)
            summary["frozen"] += 1
            return

        summary["evaluated"] += 1
        previous_status = state.status
        previous_escalations = state.escalation_count
        state = await self.evaluate(state, ticket)
        if state.status != previous_status:
            summary["transitions"] += 1
        summary["escalations"] += state.escalation_count - previous_escalations

    async def evaluate(self, state: TicketSLA, ticket: Optional[Dict[str, Any]] = None) -> TicketSLA:
        """Recompute status from the stored deadlines and escalate on transition."""
        policy = await self._policy_repo.get(state.policy_id)
        notify_before = policy.notify_before_minutes if policy else 0
        now = self._clock()

        computed, response_breached, resolution_breached = SLACalculator.calculate_status(
            now,
            state.response_deadline,
            state.resolution_deadline,
            state.first_response_at,
            notify_before
        )
        state.response_breached = state.response_breached or response_breached
        state.resolution_breached = state.resolution_breached or resolution_breached

        return await self._transition(state, computed, now, policy, ticket)

    async def _transition(
        self,
        state: TicketSLA,
        computed: str,
        now: datetime,
        policy: Optional[SLAPolicy] = None,
        ticket: Optional[Dict[str, Any]] = None
    ) -> TicketSLA:
        previous = state.status
        state.status = SLACalculator.escalate_status(previous, computed)
        state.last_evaluated_at = now

        escalate = SLACalculator.should_escalate(previous, state.status, state.last_escalated_status)
        if escalate:
            if policy is None:
                policy = await self._policy_repo.get(state.policy_id)
            escalate = policy is not None and policy.can_escalate

        if escalate:
            # Persist first so a failed send is never retried on the next tick
            state.last_escalated_status = state.status
            state.escalation_count += 1
            state = await self._state_repo.save(state)
            await self._escalate(state, policy, ticket)
            return state

        return await self._state_repo.save(state)

    async def _escalate(
        self,
        state: TicketSLA,
        policy: SLAPolicy,
        ticket: Optional[Dict[str, Any]]
    ) -> None:
        if self._executor is None:
            logger.warning("SLA escalation skipped: no action executor", extra={"ticket_id": state.ticket_id})
            return

        label = (ticket or {}).get("title") or state.ticket_id
        if state.status == SLAStatus.BREACHED:
            message = f"SLA breached for ticket {label}"
        else:
            due = state.resolution_deadline.isoformat()
            message = f"SLA at risk for ticket {label}: resolution due {due}"

        action = SendNotificationAction(
            params=MessageParams(message=message, recipients=[policy.escalation_user_id])
        )
        try:
            await self._executor.execute(action, state.ticket_id, EntityType.TICKET, ticket)
        except ActionException as e:
            logger.error(
                "SLA escalation notification failed",
                extra={"ticket_id": state.ticket_id, "status": state.status, "reason": e.reason, "error": e.message}
            )
            return

        logger.info(
            "SLA escalation sent",
            extra={
                "ticket_id": state.ticket_id,
                "status": state.status,
                "escalation_user_id": policy.escalation_user_id,
            }
        )

    # ----- maintenance & reporting -----

    async def backfill_missing(self) -> int:
        """Start tracking open tickets that have no SLA state yet."""
        open_statuses = [s for s in VALID_TICKET_STATUSES if s not in TERMINAL_TICKET_STATUSES]
        tickets = await self._entity_store.list_tickets(open_statuses)

        created = 0
        for ticket in tickets:
            if await self._state_repo.get_by_ticket(str(ticket["id"])) is not None:
                continue
            if await self.start_tracking(ticket) is not None:
                created += 1

        logger.info("SLA backfill finished", extra={"tickets_seen": len(tickets), "created": created})
        return created

    async def get_ticket_sla(self, ticket_id: str) -> TicketSLA:
        state = await self._state_repo.get_by_ticket(ticket_id)
        if state is None:
            raise ResourceNotFoundException("TicketSLA", ticket_id)
        return state

    async def get_stats(self) -> SLAComplianceStats:
        stats = SLAComplianceStats()
        for state in await self._state_repo.list_all():
            stats.response_breached += int(state.response_breached)
            stats.resolution_breached += int(state.resolution_breached)

            if state.is_frozen:
                stats.total_resolved += 1
                stats.resolved_within_deadline += int(state.resolved_within_deadline)
                continue

            stats.active_total += 1
            if state.status == SLAStatus.BREACHED:
                stats.breached += 1
            elif state.status == SLAStatus.AT_RISK:
                stats.at_risk += 1
            else:
                stats.on_track += 1
        return stats


class SLAPolicyService:
    """Validated CRUD over SLA policies."""

    def __init__(self, repository: ISLAPolicyRepository):
        self._repo = repository

    async def list_policies(self) -> List[SLAPolicy]:
        return await self._repo.list_all()

    async def get_policy(self, policy_id: str) -> SLAPolicy:
        policy = await self._repo.get(policy_id)
        if policy is None:
            raise ResourceNotFoundException("SLAPolicy", policy_id)
        return policy

    async def create_policy(self, policy: SLAPolicy) -> SLAPolicy:
        policy.validate()
        created = await self._repo.create(policy)
        logger.info("SLA policy created", extra={"policy_id": created.id, "priority": created.priority})
        return created

    async def update_policy(self, policy_id: str, changes: Dict[str, Any]) -> SLAPolicy:
        policy = await self.get_policy(policy_id)
        for key, value in changes.items():
            setattr(policy, key, value)
        policy.validate()
        return await self._repo.update(policy)

    async def toggle_policy(self, policy_id: str) -> SLAPolicy:
        policy = await self.get_policy(policy_id)
        policy.is_active = not policy.is_active
        return await self._repo.update(policy)

    async def delete_policy(self, policy_id: str) -> None:
        if not await self._repo.delete(policy_id):
            raise ResourceNotFoundException("SLAPolicy", policy_id)
        logger.info("SLA policy deleted", extra={"policy_id": policy_id})

    async def seed_defaults(self, defaults: List[Any]) -> int:
        """Create the configured default policies when none exist yet."""
        if not defaults or await self._repo.count() > 0:
            return 0
        for item in defaults:
            await self.create_policy(SLAPolicy(id="", **item.model_dump()))
        logger.info("Seeded default SLA policies", extra={"count": len(defaults)})
        return len(defaults)
