"""
Automation Facade
=================

Single entry point the CRUD layer calls after it has committed a change.
Serializes automation per entity and wires together auto-assignment,
workflow dispatch and SLA tracking.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from deskflow.config import settings, EntityType, Trigger, TERMINAL_TICKET_STATUSES
from deskflow.core import (
    ResourceNotFoundException, RecursionLimitException, ValidationException
)
from deskflow.shared.infrastructure.locks import KeyedLockRegistry, entity_locks
from deskflow.shared.infrastructure.logging import get_logger, log_latency
from deskflow.workflows.application.services import (
    IEntityStore, WorkflowDispatcher, derive_triggers
)
from deskflow.workflows.domain import AssignmentOutcome, ExecutionReport

logger = get_logger(__name__)


class EventKind:
    CREATED = "created"
    UPDATED = "updated"
    RESPONDED = "responded"


VALID_EVENT_KINDS = [EventKind.CREATED, EventKind.UPDATED, EventKind.RESPONDED]


@dataclass
class EntityEvent:
    """A committed lifecycle change reported by the CRUD layer."""

    entity_type: str
    entity_id: str
    kind: str
    previous: Optional[Dict[str, Any]] = None
    current: Optional[Dict[str, Any]] = None


@dataclass
class EventResult:
    """What automation did in response to one event."""

    entity_type: str
    entity_id: str
    kind: str
    triggers: List[str] = field(default_factory=list)
    reports: List[ExecutionReport] = field(default_factory=list)
    assignment: Optional[AssignmentOutcome] = None
    sla: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "kind": self.kind,
            "triggers": self.triggers,
            "reports": [r.to_dict() for r in self.reports],
            "assignment": self.assignment.to_dict() if self.assignment else None,
            "sla": self.sla,
            "errors": self.errors,
        }


class AutomationService:
    """
    Lifecycle hooks for tickets and assets.

    Events for the same entity are processed one at a time; events for
    different entities run concurrently.
    """

    def __init__(
        self,
        dispatcher: WorkflowDispatcher,
        entity_store: IEntityStore,
        assignment_service=None,  # AssignmentService
        sla_tracker=None,  # SLATracker from deskflow.sla
        locks: Optional[KeyedLockRegistry] = None,
        auto_assign_on_create: Optional[bool] = None
    ):
        self._dispatcher = dispatcher
        self._entity_store = entity_store
        self._assignment_service = assignment_service
        self._sla_tracker = sla_tracker
        self._locks = locks or entity_locks
        self._auto_assign = (
            settings.auto_assign_on_create
            if auto_assign_on_create is None
            else auto_assign_on_create
        )

        if sla_tracker is not None:
            dispatcher.add_change_observer(self._apply_sla_hooks)

    async def handle_event(self, event: EntityEvent) -> EventResult:
        """
        Process a lifecycle event.

        Raises:
            ValidationException: unknown event kind, or an update without
                the previous snapshot
            ResourceNotFoundException: entity does not exist
        """
        if event.kind not in VALID_EVENT_KINDS:
            raise ValidationException(
                f"Unknown event kind '{event.kind}'",
                {"allowed": VALID_EVENT_KINDS}
            )
        if event.kind == EventKind.UPDATED and event.previous is None:
            raise ValidationException("Update events need the previous snapshot")

        async with self._locks.hold((event.entity_type, event.entity_id)):
            current = event.current
            if current is None:
                current = await self._entity_store.get_entity(event.entity_type, event.entity_id)
            if current is None:
                raise ResourceNotFoundException(event.entity_type, event.entity_id)

            result = EventResult(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                kind=event.kind
            )

            with log_latency(logger, "automation_event", kind=event.kind, entity_id=event.entity_id):
                if event.kind == EventKind.CREATED:
                    await self._on_created(result, current)
                elif event.kind == EventKind.UPDATED:
                    await self._on_updated(result, event.previous, current)
                else:
                    await self._on_responded(result)

            return result

    async def _on_created(self, result: EventResult, current: Dict[str, Any]) -> None:
        is_ticket = result.entity_type == EntityType.TICKET

        if is_ticket and self._sla_tracker is not None:
            sla = await self._sla_tracker.start_tracking(current)
            result.sla = sla.to_dict() if sla else None

        before_assignment = current
        if is_ticket and self._auto_assign and self._assignment_service is not None:
            result.assignment = await self._assignment_service.assign(current)
            if result.assignment.assigned:
                refreshed = await self._entity_store.get_entity(result.entity_type, result.entity_id)
                current = refreshed or current

        await self._dispatch(result, Trigger.CREATED, current)

        if result.assignment is not None and result.assignment.assigned:
            latest = await self._entity_store.get_entity(result.entity_type, result.entity_id)
            await self._dispatch(result, Trigger.ASSIGNED, latest or current, before_assignment)

    async def _on_updated(
        self,
        result: EventResult,
        previous: Dict[str, Any],
        current: Dict[str, Any]
    ) -> None:
        triggers = derive_triggers(previous, current)
        if not triggers:
            logger.debug("Update carried no tracked change", extra={"entity_id": result.entity_id})
            return

        await self._apply_sla_hooks(result.entity_type, previous, current)

        for trigger in triggers:
            await self._dispatch(result, trigger, current, previous)
            # Later triggers see whatever earlier rules wrote
            current = await self._entity_store.get_entity(result.entity_type, result.entity_id) or current

    async def _on_responded(self, result: EventResult) -> None:
        if result.entity_type != EntityType.TICKET or self._sla_tracker is None:
            return
        sla = await self._sla_tracker.record_first_response(result.entity_id)
        result.sla = sla.to_dict() if sla else None

    async def _dispatch(
        self,
        result: EventResult,
        trigger: str,
        snapshot: Dict[str, Any],
        previous: Optional[Dict[str, Any]] = None
    ) -> None:
        result.triggers.append(trigger)
        try:
            report = await self._dispatcher.dispatch(result.entity_type, trigger, snapshot, previous)
        except RecursionLimitException as e:
            result.reports.append(e.report)
            result.errors.append(e.message)
            return
        except Exception as e:
            logger.error(
                "Workflow dispatch failed",
                extra={"entity_id": result.entity_id, "trigger": trigger, "error": str(e)}
            )
            result.errors.append(f"Dispatch of {trigger} failed: {e}")
            return
        result.reports.append(report)

    async def _apply_sla_hooks(
        self,
        entity_type: str,
        previous: Dict[str, Any],
        current: Dict[str, Any]
    ) -> None:
        """Keep SLA tracking in step with priority changes and closures."""
        if entity_type != EntityType.TICKET or self._sla_tracker is None:
            return

        if previous.get("priority") != current.get("priority"):
            await self._sla_tracker.on_priority_changed(current)

        if (
            current.get("status") in TERMINAL_TICKET_STATUSES
            and previous.get("status") not in TERMINAL_TICKET_STATUSES
        ):
            await self._sla_tracker.on_ticket_closed(current)
