"""
Tests for ActionExecutor.
"""

import pytest

from deskflow.core import ActionException
from deskflow.workflows.application import ActionExecutor, render_template
from deskflow.workflows.domain import (
    AddCommentAction,
    AddCommentParams,
    AssignAction,
    AssignParams,
    ChangePriorityAction,
    ChangePriorityParams,
    ChangeStatusAction,
    ChangeStatusParams,
    MessageParams,
    SendNotificationAction,
    SendWhatsAppAction,
)

from tests.conftest import RecordingTransport, build_assignment_service, technician


@pytest.fixture
def executor(entity_store, transport):
    return ActionExecutor(entity_store, transport, timeout_seconds=1.0, system_author_id="automation-bot")


class TestActionExecutor:
    """Single action application."""

    @pytest.mark.asyncio
    async def test_change_status_writes_entity(self, executor, entity_store, ticket):
        action = ChangeStatusAction(params=ChangeStatusParams(status="in_progress"))

        detail = await executor.execute(action, "T-1", "ticket")

        assert detail == {"status": "in_progress", "changed": True}
        assert entity_store.entities[("ticket", "T-1")]["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_no_op_write_is_skipped(self, executor, entity_store, ticket):
        action = ChangeStatusAction(params=ChangeStatusParams(status="open"))

        detail = await executor.execute(action, "T-1", "ticket")

        assert detail["changed"] is False
        assert entity_store.writes == []

    @pytest.mark.asyncio
    async def test_invalid_status_is_rejected(self, executor, ticket):
        action = ChangeStatusAction(params=ChangeStatusParams(status="retired"))

        with pytest.raises(ActionException) as exc_info:
            await executor.execute(action, "T-1", "ticket")

        assert exc_info.value.reason == ActionException.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_asset_status_uses_asset_vocabulary(self, executor, entity_store):
        entity_store.add("asset", {"id": "A-1", "status": "available"})
        action = ChangeStatusAction(params=ChangeStatusParams(status="maintenance"))

        await executor.execute(action, "A-1", "asset")

        assert entity_store.entities[("asset", "A-1")]["status"] == "maintenance"

    @pytest.mark.asyncio
    async def test_change_priority_only_on_tickets(self, executor, entity_store):
        entity_store.add("asset", {"id": "A-1", "status": "available"})
        action = ChangePriorityAction(params=ChangePriorityParams(priority="critical"))

        with pytest.raises(ActionException) as exc_info:
            await executor.execute(action, "A-1", "asset")

        assert exc_info.value.reason == ActionException.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_comment_is_rendered_and_system_authored(self, executor, transport, ticket):
        action = AddCommentAction(params=AddCommentParams(comment="Escalated {title} ({priority}) {unknown}"))

        detail = await executor.execute(action, "T-1", "ticket")

        assert detail == {"comment_id": "comment-1"}
        assert transport.comments[0]["author_id"] == "automation-bot"
        assert transport.comments[0]["text"] == "Escalated VPN down in Berlin office (high) {unknown}"

    @pytest.mark.asyncio
    async def test_notification_channels(self, executor, transport, ticket):
        params = MessageParams(message="Ticket {id} needs attention", recipients=["lead-1", "lead-2"])

        await executor.execute(SendNotificationAction(params=params), "T-1", "ticket")
        await executor.execute(SendWhatsAppAction(params=params), "T-1", "ticket")

        assert [m["channel"] for m in transport.sent] == ["in_app", "whatsapp"]
        assert transport.sent[0]["message"] == "Ticket T-1 needs attention"
        assert transport.sent[0]["recipients"] == ["lead-1", "lead-2"]

    @pytest.mark.asyncio
    async def test_slow_collaborator_times_out(self, entity_store, ticket):
        executor = ActionExecutor(entity_store, RecordingTransport(delay=1.0), timeout_seconds=0.01)
        action = SendNotificationAction(params=MessageParams(message="hi", recipients=["u1"]))

        with pytest.raises(ActionException) as exc_info:
            await executor.execute(action, "T-1", "ticket")

        assert exc_info.value.reason == ActionException.TIMEOUT

    @pytest.mark.asyncio
    async def test_missing_entity_is_a_collaborator_error(self, executor):
        action = AddCommentAction(params=AddCommentParams(comment="hello"))

        with pytest.raises(ActionException) as exc_info:
            await executor.execute(action, "T-404", "ticket")

        assert exc_info.value.reason == ActionException.COLLABORATOR_ERROR

    @pytest.mark.asyncio
    async def test_rule_based_assign_needs_assignment_service(self, executor, ticket):
        action = AssignAction(params=AssignParams(use_assignment_rules=True))

        with pytest.raises(ActionException) as exc_info:
            await executor.execute(action, "T-1", "ticket")

        assert exc_info.value.reason == ActionException.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_rule_based_assign_uses_assignment_rules(self, entity_store, transport, ticket):
        entity_store.technicians = [technician("alice", active=2), technician("bob", active=0)]
        assignment = build_assignment_service(entity_store, [], fallback=True)
        executor = ActionExecutor(entity_store, transport, assignment_service=assignment, timeout_seconds=1.0)

        detail = await executor.execute(AssignAction(params=AssignParams(use_assignment_rules=True)), "T-1", "ticket")

        assert detail["assigned"] is True
        assert entity_store.entities[("ticket", "T-1")]["assigned_to_id"] == "bob"

    @pytest.mark.asyncio
    async def test_direct_assign(self, executor, entity_store, ticket):
        await executor.execute(AssignAction(params=AssignParams(user_id="carol")), "T-1", "ticket")

        assert entity_store.entities[("ticket", "T-1")]["assigned_to_id"] == "carol"


class TestRenderTemplate:

    def test_missing_snapshot_returns_template(self):
        assert render_template("Hello {name}", None) == "Hello {name}"

    def test_none_values_render_empty(self):
        assert render_template("Assignee: {assigned_to_id}.", {"assigned_to_id": None}) == "Assignee: ."

    def test_malformed_template_is_left_alone(self):
        assert render_template("Broken {", {"id": 1}) == "Broken {"
