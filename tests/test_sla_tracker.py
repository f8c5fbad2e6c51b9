"""
Tests for SLATracker: lifecycle hooks, sweep, escalation and statistics.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from deskflow.core import ResourceNotFoundException
from deskflow.sla.application import SLAPolicyService
from deskflow.sla.domain import DefaultSLAPolicyConfig

from tests.conftest import (
    InMemorySLAPolicyRepository,
    InMemoryTicketSLARepository,
    build_tracker,
    policy,
)


@pytest.fixture
def critical_ticket(entity_store):
    return entity_store.add("ticket", {
        "id": "T-9",
        "title": "Payroll server down",
        "status": "open",
        "priority": "critical",
        "assigned_to_id": None,
    })


@pytest.fixture
def states():
    return InMemoryTicketSLARepository()


@pytest.fixture
def tracker(entity_store, transport, clock, states):
    return build_tracker(
        entity_store, transport, [policy(), policy("low", 480, 2880)], clock, states=states
    )


class TestStartTracking:

    @pytest.mark.asyncio
    async def test_deadlines_from_policy(self, tracker, critical_ticket, clock):
        state = await tracker.start_tracking(critical_ticket)

        assert state.status == "on_track"
        assert state.policy_id == "p-critical"
        assert state.response_deadline == clock.now + timedelta(minutes=30)
        assert state.resolution_deadline == clock.now + timedelta(minutes=240)

    @pytest.mark.asyncio
    async def test_no_policy_means_no_tracking(self, tracker, entity_store):
        ticket = entity_store.add("ticket", {"id": "T-2", "status": "open", "priority": "medium"})

        assert await tracker.start_tracking(ticket) is None

    @pytest.mark.asyncio
    async def test_tracking_is_idempotent(self, tracker, critical_ticket, clock, states):
        first = await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=5)
        second = await tracker.start_tracking(critical_ticket)

        assert second is first
        assert states.saves == 1

    @pytest.mark.asyncio
    async def test_newest_policy_wins_a_tie(self, entity_store, transport, clock, critical_ticket):
        older = policy(id="old", response=60, created_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
        newer = policy(id="new", response=15, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        tracker = build_tracker(entity_store, transport, [newer, older], clock)

        state = await tracker.start_tracking(critical_ticket)

        assert state.policy_id == "new"

    @pytest.mark.asyncio
    async def test_inactive_policies_are_ignored(self, entity_store, transport, clock, critical_ticket):
        tracker = build_tracker(entity_store, transport, [policy(is_active=False)], clock)

        assert await tracker.start_tracking(critical_ticket) is None


class TestSweep:
    """Periodic re-evaluation and escalation."""

    @pytest.mark.asyncio
    async def test_missed_response_breaches_and_escalates_once(self, tracker, critical_ticket, clock, transport):
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=31)

        first = await tracker.sweep()
        second = await tracker.sweep()
        state = await tracker.get_ticket_sla("T-9")

        assert state.status == "breached"
        assert state.response_breached is True
        assert state.escalation_count == 1
        assert first["transitions"] == 1
        assert first["escalations"] == 1
        assert second["escalations"] == 0
        assert len(transport.sent) == 1
        assert transport.sent[0]["recipients"] == ["lead-1"]
        assert "SLA breached" in transport.sent[0]["message"]

    @pytest.mark.asyncio
    async def test_at_risk_then_breached_escalates_per_transition(self, tracker, critical_ticket, clock, transport):
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=10)
        await tracker.record_first_response("T-9")

        clock.advance(minutes=205)  # 30 minutes before resolution deadline
        await tracker.sweep()
        at_risk = await tracker.get_ticket_sla("T-9")
        assert at_risk.status == "at_risk"

        clock.advance(minutes=31)
        await tracker.sweep()
        await tracker.sweep()
        breached = await tracker.get_ticket_sla("T-9")

        assert breached.status == "breached"
        assert breached.resolution_breached is True
        assert breached.escalation_count == 2
        assert len(transport.sent) == 2

    @pytest.mark.asyncio
    async def test_escalation_needs_an_escalation_user(self, entity_store, transport, clock, critical_ticket):
        tracker = build_tracker(entity_store, transport, [policy(escalation_user_id=None)], clock)
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=31)

        await tracker.sweep()

        assert (await tracker.get_ticket_sla("T-9")).status == "breached"
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_closed_ticket_is_frozen_by_sweep(self, tracker, critical_ticket, entity_store, clock):
        await tracker.start_tracking(critical_ticket)
        entity_store.entities[("ticket", "T-9")]["status"] = "closed"
        clock.advance(minutes=5)

        summary = await tracker.sweep()
        state = await tracker.get_ticket_sla("T-9")

        assert summary["frozen"] == 1
        assert state.is_frozen
        assert state.resolved_within_deadline

    @pytest.mark.asyncio
    async def test_deleted_ticket_stops_tracking(self, tracker, critical_ticket, entity_store):
        await tracker.start_tracking(critical_ticket)
        del entity_store.entities[("ticket", "T-9")]

        await tracker.sweep()

        with pytest.raises(ResourceNotFoundException):
            await tracker.get_ticket_sla("T-9")

    @pytest.mark.asyncio
    async def test_one_failing_ticket_does_not_end_the_pass(self, tracker, entity_store, clock, transport):
        for ticket_id in ("BAD", "T-9"):
            await tracker.start_tracking(
                entity_store.add("ticket", {"id": ticket_id, "status": "open", "priority": "critical"})
            )
        clock.advance(minutes=31)
        read = entity_store.get_entity

        async def get_entity(entity_type, entity_id):
            if entity_id == "BAD":
                raise RuntimeError("connection reset")
            return await read(entity_type, entity_id)

        entity_store.get_entity = get_entity
        summary = await tracker.sweep()

        assert summary["errors"] == 1
        assert summary["escalations"] == 1
        assert (await tracker.get_ticket_sla("T-9")).status == "breached"
        assert (await tracker.get_ticket_sla("BAD")).status == "on_track"

    @pytest.mark.asyncio
    async def test_overlapping_sweep_is_skipped(self, entity_store, transport, clock):
        lock = asyncio.Lock()
        tracker = build_tracker(entity_store, transport, [policy()], clock, lock=lock)

        async with lock:
            assert await tracker.sweep() is None


class TestLifecycleHooks:

    @pytest.mark.asyncio
    async def test_late_first_response_marks_breach(self, tracker, critical_ticket, clock):
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=45)

        state = await tracker.record_first_response("T-9")

        assert state.first_response_at == clock.now
        assert state.response_breached is True
        assert state.status == "breached"

    @pytest.mark.asyncio
    async def test_first_response_is_recorded_once(self, tracker, critical_ticket, clock):
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=5)
        first = await tracker.record_first_response("T-9")
        stamped = first.first_response_at

        clock.advance(minutes=5)
        second = await tracker.record_first_response("T-9")

        assert second.first_response_at == stamped

    @pytest.mark.asyncio
    async def test_priority_change_restarts_deadlines(self, tracker, critical_ticket, clock):
        await tracker.start_tracking(critical_ticket)
        clock.advance(minutes=31)
        await tracker.sweep()

        clock.advance(minutes=10)
        state = await tracker.on_priority_changed({**critical_ticket, "priority": "low"})

        assert state.policy_id == "p-low"
        assert state.status == "on_track"
        assert state.response_breached is False
        assert state.response_deadline == clock.now + timedelta(minutes=480)

    @pytest.mark.asyncio
    async def test_priority_without_policy_drops_tracking(self, tracker, critical_ticket, states):
        await tracker.start_tracking(critical_ticket)

        assert await tracker.on_priority_changed({**critical_ticket, "priority": "medium"}) is None
        assert "T-9" not in states.states

    @pytest.mark.asyncio
    async def test_late_closure_is_breached_without_escalation(self, tracker, critical_ticket, clock, transport):
        await tracker.start_tracking(critical_ticket)
        await tracker.record_first_response("T-9")
        clock.advance(minutes=300)

        state = await tracker.on_ticket_closed({**critical_ticket, "status": "closed"})

        assert state.is_frozen
        assert state.resolution_breached is True
        assert state.status == "breached"
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_frozen_state_ignores_priority_changes(self, tracker, critical_ticket):
        await tracker.start_tracking(critical_ticket)
        closed = await tracker.on_ticket_closed({**critical_ticket, "status": "closed"})

        after = await tracker.on_priority_changed({**critical_ticket, "priority": "low"})

        assert after.policy_id == closed.policy_id == "p-critical"


class TestStatsAndBackfill:

    @pytest.mark.asyncio
    async def test_compliance_rate_with_nothing_resolved(self, tracker):
        stats = await tracker.get_stats()

        assert stats.total_resolved == 0
        assert stats.compliance_rate == 100.0

    @pytest.mark.asyncio
    async def test_stats_count_active_and_resolved(self, tracker, entity_store, clock):
        for ticket_id in ("A", "B", "C"):
            await tracker.start_tracking(
                entity_store.add("ticket", {"id": ticket_id, "status": "open", "priority": "critical"})
            )
        await tracker.on_ticket_closed({"id": "A"})
        clock.advance(minutes=300)
        await tracker.on_ticket_closed({"id": "B"})

        stats = (await tracker.get_stats()).to_dict()

        assert stats["active_total"] == 1
        assert stats["total_resolved"] == 2
        assert stats["resolved_within_deadline"] == 1
        assert stats["resolution_breached"] == 1
        assert stats["compliance_rate"] == 50.0

    @pytest.mark.asyncio
    async def test_backfill_tracks_open_untracked_tickets(self, tracker, entity_store, critical_ticket):
        await tracker.start_tracking(critical_ticket)
        entity_store.add("ticket", {"id": "T-10", "status": "in_progress", "priority": "low"})
        entity_store.add("ticket", {"id": "T-11", "status": "closed", "priority": "low"})
        entity_store.add("ticket", {"id": "T-12", "status": "open", "priority": "medium"})

        assert await tracker.backfill_missing() == 1


class TestSLAPolicyService:

    @pytest.mark.asyncio
    async def test_seed_defaults_only_on_empty_table(self):
        repository = InMemorySLAPolicyRepository()
        service = SLAPolicyService(repository)
        defaults = [
            DefaultSLAPolicyConfig(
                name="Critical", priority="critical",
                response_time_minutes=30, resolution_time_minutes=240
            )
        ]

        assert await service.seed_defaults(defaults) == 1
        assert await service.seed_defaults(defaults) == 0
        assert await repository.count() == 1

    @pytest.mark.asyncio
    async def test_delete_missing_policy(self):
        service = SLAPolicyService(InMemorySLAPolicyRepository())

        with pytest.raises(ResourceNotFoundException):
            await service.delete_policy("nope")
