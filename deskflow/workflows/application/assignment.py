"""
Assignment Application Services
===============================

- AssignmentStrategyResolver: picks a technician for one rule
- AssignmentService: runs the active rules for a ticket and writes the result
"""

from typing import Any, Dict, List, Optional

from deskflow.config import settings, AssignmentType, EntityType
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.application.services import (
    IAssignmentRuleRepository, IEntityStore, IRoundRobinCursor
)
from deskflow.workflows.domain import (
    AssignmentOutcome, AssignmentRule, ConditionEvaluator, TechnicianWorkload
)
from deskflow.workflows.domain.assignment import (
    eligible_pool, index_pool, is_assignable, pick_least_busy
)

logger = get_logger(__name__)


class AssignmentStrategyResolver:
    """
    Applies a rule's strategy to the technician pool.

    round_robin and specific_user rotate through ``target_users`` using the
    persisted cursor, skipping technicians that are unavailable. The
    workload strategies pick the least busy eligible technician.
    """

    def __init__(self, cursor: IRoundRobinCursor):
        self._cursor = cursor

    async def resolve(
        self,
        rule: AssignmentRule,
        ticket: Dict[str, Any],
        pool: List[TechnicianWorkload]
    ) -> Optional[str]:
        """User id for ``ticket`` under ``rule``, or None when nobody is eligible."""
        if rule.assignment_type in (AssignmentType.ROUND_ROBIN, AssignmentType.SPECIFIC_USER):
            return await self._next_in_rotation(rule, pool)

        if rule.assignment_type in (
            AssignmentType.LEAST_BUSY,
            AssignmentType.SKILL_BASED,
            AssignmentType.LOCATION_BASED,
        ):
            return pick_least_busy(eligible_pool(rule, pool))

        logger.warning(
            "Unknown assignment strategy",
            extra={"rule_id": rule.id, "assignment_type": rule.assignment_type}
        )
        return None

    async def _next_in_rotation(
        self,
        rule: AssignmentRule,
        pool: List[TechnicianWorkload]
    ) -> Optional[str]:
        targets = rule.target_users
        pool_index = index_pool(pool)

        if not any(is_assignable(user_id, pool_index) for user_id in targets):
            return None

        # Each advance is atomic, so concurrent tickets never share a slot
        for _ in range(len(targets)):
            position = await self._cursor.advance(rule.id, len(targets))
            candidate = targets[position % len(targets)]
            if is_assignable(candidate, pool_index):
                return candidate

        return None


class AssignmentService:
    """
    Service for automatic ticket assignment.

    Rules are tried highest priority first (creation order within a
    priority); the first matching rule that yields a technician wins.
    A ticket nobody can take is reported as unassigned, never raised.
    """

    def __init__(
        self,
        rule_repository: IAssignmentRuleRepository,
        entity_store: IEntityStore,
        resolver: AssignmentStrategyResolver,
        evaluator: Optional[ConditionEvaluator] = None,
        fallback_least_busy: Optional[bool] = None
    ):
        self._rule_repo = rule_repository
        self._entity_store = entity_store
        self._resolver = resolver
        self._evaluator = evaluator or ConditionEvaluator()
        self._fallback_least_busy = (
            settings.assignment_fallback_least_busy
            if fallback_least_busy is None
            else fallback_least_busy
        )

    async def assign(
        self,
        ticket: Dict[str, Any],
        ignore_existing: bool = False
    ) -> AssignmentOutcome:
        """
        Pick a technician for ``ticket`` and persist the assignment.

        Args:
            ticket: Ticket snapshot
            ignore_existing: Reassign even if the ticket already has an assignee
        """
        ticket_id = str(ticket["id"])

        if ticket.get("assigned_to_id") and not ignore_existing:
            return AssignmentOutcome(
                status=AssignmentOutcome.ALREADY_ASSIGNED,
                user_id=ticket["assigned_to_id"]
            )

        outcome = await self.select(ticket)

        if outcome.assigned:
            if outcome.user_id != ticket.get("assigned_to_id"):
                await self._entity_store.update_entity(
                    EntityType.TICKET, ticket_id, {"assigned_to_id": outcome.user_id}
                )
            logger.info(
                "Ticket auto-assigned",
                extra={
                    "ticket_id": ticket_id,
                    "user_id": outcome.user_id,
                    "rule_id": outcome.rule_id,
                    "strategy": outcome.strategy,
                }
            )
        else:
            logger.warning(
                "No eligible technician for ticket",
                extra={"ticket_id": ticket_id, "rules_evaluated": outcome.rules_evaluated}
            )

        return outcome

    async def select(self, ticket: Dict[str, Any]) -> AssignmentOutcome:
        """Choose a technician without writing anything."""
        rules = await self._rule_repo.list_active()
        rules = sorted(rules, key=lambda r: r.priority, reverse=True)
        pool = await self._entity_store.list_technicians()

        evaluated = 0
        for rule in rules:
            if not self._evaluator.matches(rule.conditions, ticket):
                continue
            evaluated += 1

            user_id = await self._resolver.resolve(rule, ticket, pool)
            if user_id:
                return AssignmentOutcome(
                    status=AssignmentOutcome.ASSIGNED,
                    user_id=user_id,
                    rule_id=rule.id,
                    strategy=rule.assignment_type,
                    rules_evaluated=evaluated
                )

        if self._fallback_least_busy:
            user_id = pick_least_busy(tech for tech in pool if tech.is_available)
            if user_id:
                return AssignmentOutcome(
                    status=AssignmentOutcome.ASSIGNED,
                    user_id=user_id,
                    strategy=AssignmentType.LEAST_BUSY,
                    rules_evaluated=evaluated
                )

        return AssignmentOutcome(status=AssignmentOutcome.UNASSIGNED, rules_evaluated=evaluated)

    async def get_stats(self) -> Dict[str, Any]:
        """Rule counts and the technician workload table."""
        rules = await self._rule_repo.list_all()
        pool = await self._entity_store.list_technicians()
        workload = sorted(pool, key=lambda t: (t.active_ticket_count, t.user_id))

        return {
            "total_rules": len(rules),
            "active_rules": sum(1 for r in rules if r.is_active),
            "total_technicians": len(pool),
            "available_technicians": sum(1 for t in pool if t.is_available),
            "technician_workload": [t.to_dict() for t in workload],
        }
