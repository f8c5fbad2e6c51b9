"""
Tests for the AutomationService lifecycle facade.
"""

import asyncio

import pytest

from deskflow.core import ResourceNotFoundException, ValidationException
from deskflow.shared.infrastructure.locks import KeyedLockRegistry
from deskflow.workflows.application import AutomationService, EntityEvent
from deskflow.workflows.domain import (
    AddCommentAction,
    AddCommentParams,
    AssignmentRule,
    ChangePriorityAction,
    ChangePriorityParams,
    ChangeStatusAction,
    ChangeStatusParams,
    ExecutionReport,
    WorkflowRule,
)

from tests.conftest import (
    build_assignment_service,
    build_dispatcher,
    build_tracker,
    policy,
    technician,
)


def rule(rule_id, trigger, action, entity_type="ticket"):
    return WorkflowRule(id=rule_id, name=rule_id, entity_type=entity_type, trigger=trigger, actions=[action])


def comment(text):
    return AddCommentAction(params=AddCommentParams(comment=text))


@pytest.fixture
def make_service(entity_store, transport, clock, locks):
    def factory(rules=(), assignment_rules=None, policies=(), auto_assign=True):
        assignment = build_assignment_service(entity_store, assignment_rules)
        dispatcher = build_dispatcher(entity_store, transport, list(rules), assignment_service=assignment)
        tracker = build_tracker(entity_store, transport, list(policies), clock, locks=locks)
        service = AutomationService(
            dispatcher,
            entity_store,
            assignment_service=assignment,
            sla_tracker=tracker,
            locks=locks,
            auto_assign_on_create=auto_assign,
        )
        return service, tracker
    return factory


class TestCreatedEvents:

    @pytest.mark.asyncio
    async def test_created_ticket_is_tracked_assigned_and_dispatched(
        self, make_service, entity_store, transport, ticket
    ):
        entity_store.technicians = [technician("alice")]
        service, tracker = make_service(
            rules=[rule("welcome", "created", comment("Welcome")), rule("on-assign", "assigned", comment("Assigned to {assigned_to_id}"))],
            assignment_rules=[
                AssignmentRule(id="rr", name="rr", assignment_type="round_robin", target_users=["alice"])
            ],
            policies=[policy("high", 60, 480)],
        )

        result = await service.handle_event(EntityEvent("ticket", "T-1", "created"))

        assert result.triggers == ["created", "assigned"]
        assert result.assignment.user_id == "alice"
        assert result.sla["status"] == "on_track"
        assert [c["text"] for c in transport.comments] == ["Welcome", "Assigned to alice"]
        assert (await tracker.get_ticket_sla("T-1")).policy_id == "p-high"

    @pytest.mark.asyncio
    async def test_auto_assign_can_be_disabled(self, make_service, entity_store, ticket):
        entity_store.technicians = [technician("alice")]
        service, _ = make_service(
            assignment_rules=[
                AssignmentRule(id="rr", name="rr", assignment_type="round_robin", target_users=["alice"])
            ],
            auto_assign=False,
        )

        result = await service.handle_event(EntityEvent("ticket", "T-1", "created"))

        assert result.assignment is None
        assert result.triggers == ["created"]

    @pytest.mark.asyncio
    async def test_unassignable_ticket_is_reported_not_raised(self, make_service, ticket):
        service, _ = make_service(
            assignment_rules=[
                AssignmentRule(id="rr", name="rr", assignment_type="round_robin", target_users=["ghost"])
            ]
        )

        result = await service.handle_event(EntityEvent("ticket", "T-1", "created"))

        assert result.assignment.status == "unassigned"
        assert result.to_dict()["assignment"]["status"] == "unassigned"

    @pytest.mark.asyncio
    async def test_asset_events_skip_ticket_automation(self, make_service, entity_store, transport):
        entity_store.add("asset", {"id": "A-1", "status": "available"})
        service, _ = make_service(rules=[rule("asset-created", "created", comment("Asset registered"), "asset")])

        result = await service.handle_event(EntityEvent("asset", "A-1", "created"))

        assert result.assignment is None
        assert result.sla is None
        assert transport.comments[0]["text"] == "Asset registered"


class TestUpdatedEvents:

    @pytest.mark.asyncio
    async def test_triggers_are_derived_from_the_diff(self, make_service, entity_store, ticket):
        service, _ = make_service()
        previous = dict(ticket)
        current = await entity_store.update_entity("ticket", "T-1", {"status": "in_progress"})

        result = await service.handle_event(EntityEvent("ticket", "T-1", "updated", previous, current))

        assert result.triggers == ["status_changed", "updated"]

    @pytest.mark.asyncio
    async def test_update_without_changes_does_nothing(self, make_service, ticket):
        service, _ = make_service()

        result = await service.handle_event(EntityEvent("ticket", "T-1", "updated", dict(ticket), dict(ticket)))

        assert result.triggers == []

    @pytest.mark.asyncio
    async def test_update_requires_previous_snapshot(self, make_service, ticket):
        service, _ = make_service()

        with pytest.raises(ValidationException):
            await service.handle_event(EntityEvent("ticket", "T-1", "updated"))

    @pytest.mark.asyncio
    async def test_unknown_entity(self, make_service):
        service, _ = make_service()

        with pytest.raises(ResourceNotFoundException):
            await service.handle_event(EntityEvent("ticket", "missing", "created"))

    @pytest.mark.asyncio
    async def test_closing_freezes_sla(self, make_service, entity_store, ticket):
        service, tracker = make_service(policies=[policy("high", 60, 480)])
        await service.handle_event(EntityEvent("ticket", "T-1", "created"))
        previous = await entity_store.get_entity("ticket", "T-1")
        current = await entity_store.update_entity("ticket", "T-1", {"status": "closed"})

        await service.handle_event(EntityEvent("ticket", "T-1", "updated", previous, current))

        assert (await tracker.get_ticket_sla("T-1")).is_frozen

    @pytest.mark.asyncio
    async def test_rule_driven_priority_change_reselects_policy(self, make_service, entity_store, ticket):
        escalate = ChangePriorityAction(params=ChangePriorityParams(priority="critical"))
        service, tracker = make_service(
            rules=[rule("vpn-critical", "status_changed", escalate)],
            policies=[policy("high", 60, 480), policy("critical", 30, 240)],
        )
        await service.handle_event(EntityEvent("ticket", "T-1", "created"))
        previous = await entity_store.get_entity("ticket", "T-1")
        current = await entity_store.update_entity("ticket", "T-1", {"status": "in_progress"})

        await service.handle_event(EntityEvent("ticket", "T-1", "updated", previous, current))

        assert (await tracker.get_ticket_sla("T-1")).policy_id == "p-critical"

    @pytest.mark.asyncio
    async def test_recursion_limit_is_reported_in_result(self, make_service, entity_store, ticket):
        flip = rule("flip", "updated", ChangeStatusAction(params=ChangeStatusParams(status="in_progress")))
        flop = rule("flop", "updated", ChangeStatusAction(params=ChangeStatusParams(status="open")))
        service, _ = make_service(rules=[flip, flop])
        previous = dict(ticket)
        current = await entity_store.update_entity("ticket", "T-1", {"title": "VPN still down"})

        result = await service.handle_event(EntityEvent("ticket", "T-1", "updated", previous, current))

        assert result.errors
        assert result.reports[-1].error


class TestRespondedEvents:

    @pytest.mark.asyncio
    async def test_first_response_is_recorded(self, make_service, ticket, clock):
        service, _ = make_service(policies=[policy("high", 60, 480)])
        await service.handle_event(EntityEvent("ticket", "T-1", "created"))
        clock.advance(minutes=12)

        result = await service.handle_event(EntityEvent("ticket", "T-1", "responded"))

        assert result.sla["first_response_at"] == clock.now.isoformat()


class TestDispatchFailures:

    @pytest.mark.asyncio
    async def test_unexpected_dispatch_error_is_reported_not_raised(self, entity_store, ticket):
        class BrokenDispatcher:
            async def dispatch(self, entity_type, trigger, snapshot, previous=None):
                raise RuntimeError("rule table unavailable")

        service = AutomationService(
            BrokenDispatcher(), entity_store, locks=KeyedLockRegistry(), auto_assign_on_create=False
        )

        result = await service.handle_event(EntityEvent("ticket", "T-1", "created"))

        assert result.triggers == ["created"]
        assert result.reports == []
        assert "rule table unavailable" in result.errors[0]


class TestSerialization:

    @pytest.mark.asyncio
    async def test_events_for_one_entity_run_one_at_a_time(self, entity_store, ticket):
        order = []

        class SlowDispatcher:
            async def dispatch(self, entity_type, trigger, snapshot, previous=None):
                order.append(("start", snapshot["title"]))
                await asyncio.sleep(0.01)
                order.append(("end", snapshot["title"]))
                return ExecutionReport(entity_type=entity_type, entity_id=snapshot["id"], trigger=trigger)

        service = AutomationService(
            SlowDispatcher(), entity_store, locks=KeyedLockRegistry(), auto_assign_on_create=False
        )
        first = EntityEvent("ticket", "T-1", "created", current={**ticket, "title": "one"})
        second = EntityEvent("ticket", "T-1", "created", current={**ticket, "title": "two"})

        await asyncio.gather(service.handle_event(first), service.handle_event(second))

        assert order == [("start", "one"), ("end", "one"), ("start", "two"), ("end", "two")]
