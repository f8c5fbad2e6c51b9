"""
Pytest Configuration and Fixtures

In-memory implementations of the repository and collaborator interfaces,
plus builders for the application services wired onto them.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest

from deskflow.shared.infrastructure.locks import KeyedLockRegistry
from deskflow.sla.application import ISLAPolicyRepository, ITicketSLARepository, SLATracker
from deskflow.sla.domain import SLAPolicy, TicketSLA
from deskflow.workflows.application import (
    ActionExecutor,
    AssignmentService,
    AssignmentStrategyResolver,
    IAssignmentRuleRepository,
    IEntityStore,
    IExecutionLogRepository,
    IMessagingTransport,
    IRoundRobinCursor,
    IWorkflowRuleRepository,
    WorkflowDispatcher,
)
from deskflow.workflows.domain import (
    AssignmentRule, TechnicianWorkload, WorkflowExecution, WorkflowRule
)


# ========== Collaborators ==========

class InMemoryEntityStore(IEntityStore):
    """Tickets/assets keyed by (entity_type, id) plus a technician table."""

    def __init__(self):
        self.entities: Dict[tuple, Dict[str, Any]] = {}
        self.technicians: List[TechnicianWorkload] = []
        self.writes: List[tuple] = []

    def add(self, entity_type: str, entity: Dict[str, Any]) -> Dict[str, Any]:
        self.entities[(entity_type, str(entity["id"]))] = dict(entity)
        return entity

    async def get_entity(self, entity_type, entity_id):
        found = self.entities.get((entity_type, str(entity_id)))
        return dict(found) if found is not None else None

    async def update_entity(self, entity_type, entity_id, patch):
        entity = self.entities[(entity_type, str(entity_id))]
        entity.update(patch)
        entity["updated_at"] = datetime.now(timezone.utc)
        self.writes.append((entity_type, str(entity_id), dict(patch)))
        return dict(entity)

    async def list_technicians(self):
        return list(self.technicians)

    async def list_tickets(self, statuses):
        return [
            dict(entity) for (entity_type, _), entity in self.entities.items()
            if entity_type == "ticket" and entity.get("status") in statuses
        ]


class RecordingTransport(IMessagingTransport):
    """Captures messages and comments instead of delivering them."""

    def __init__(self, delay: float = 0.0):
        self.sent: List[Dict[str, Any]] = []
        self.comments: List[Dict[str, Any]] = []
        self.delay = delay

    async def send(self, message, recipients, *, channel="in_app", entity_type=None, entity_id=None, title=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append({
            "message": message,
            "recipients": list(recipients),
            "channel": channel,
            "entity_type": entity_type,
            "entity_id": entity_id,
        })
        return {"queued": len(recipients), "duplicates": 0}

    async def add_comment(self, entity_type, entity_id, author_system_id, text):
        self.comments.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "author_id": author_system_id,
            "text": text,
        })
        return f"comment-{len(self.comments)}"


# ========== Configuration store ==========

class InMemoryWorkflowRuleRepository(IWorkflowRuleRepository):
    """Keeps rules in creation order."""

    def __init__(self, rules: Optional[List[WorkflowRule]] = None):
        self.rules: Dict[str, WorkflowRule] = {}
        for rule in rules or []:
            self.rules[rule.id] = rule

    async def list_active(self, entity_type, trigger):
        return [
            r for r in self.rules.values()
            if r.is_active and r.entity_type == entity_type and r.trigger == trigger
        ]

    async def list_all(self):
        return sorted(self.rules.values(), key=lambda r: r.priority, reverse=True)

    async def get(self, rule_id):
        return self.rules.get(rule_id)

    async def create(self, rule):
        rule.id = rule.id or str(uuid4())
        self.rules[rule.id] = rule
        return rule

    async def update(self, rule):
        self.rules[rule.id] = rule
        return rule

    async def delete(self, rule_id):
        return self.rules.pop(rule_id, None) is not None


class InMemoryAssignmentRuleRepository(IAssignmentRuleRepository):

    def __init__(self, rules: Optional[List[AssignmentRule]] = None):
        self.rules: Dict[str, AssignmentRule] = {}
        for rule in rules or []:
            self.rules[rule.id] = rule

    async def list_active(self):
        return [r for r in self.rules.values() if r.is_active]

    async def list_all(self):
        return list(self.rules.values())

    async def get(self, rule_id):
        return self.rules.get(rule_id)

    async def create(self, rule):
        rule.id = rule.id or str(uuid4())
        self.rules[rule.id] = rule
        return rule

    async def update(self, rule):
        self.rules[rule.id] = rule
        return rule

    async def delete(self, rule_id):
        return self.rules.pop(rule_id, None) is not None


class InMemoryRoundRobinCursor(IRoundRobinCursor):

    def __init__(self):
        self.positions: Dict[str, int] = {}

    async def advance(self, rule_id, size):
        position = self.positions.get(rule_id, 0) % size
        self.positions[rule_id] = (position + 1) % size
        return position


class InMemoryExecutionLog(IExecutionLogRepository):

    def __init__(self):
        self.executions: List[WorkflowExecution] = []

    async def record(self, execution):
        execution.id = str(len(self.executions) + 1)
        self.executions.append(execution)
        return execution

    async def list(self, workflow_id=None, status=None, limit=50):
        rows = [
            e for e in reversed(self.executions)
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]
        return rows[:limit]


class InMemorySLAPolicyRepository(ISLAPolicyRepository):

    def __init__(self, policies: Optional[List[SLAPolicy]] = None):
        self.policies: Dict[str, SLAPolicy] = {}
        for policy in policies or []:
            self.policies[policy.id] = policy

    async def list_all(self):
        return list(self.policies.values())

    async def list_active_for_priority(self, priority):
        return [p for p in self.policies.values() if p.is_active and p.priority == priority]

    async def get(self, policy_id):
        return self.policies.get(policy_id)

    async def create(self, policy):
        policy.id = policy.id or str(uuid4())
        self.policies[policy.id] = policy
        return policy

    async def update(self, policy):
        self.policies[policy.id] = policy
        return policy

    async def delete(self, policy_id):
        return self.policies.pop(policy_id, None) is not None

    async def count(self):
        return len(self.policies)


class InMemoryTicketSLARepository(ITicketSLARepository):

    def __init__(self):
        self.states: Dict[str, TicketSLA] = {}
        self.saves = 0

    async def get_by_ticket(self, ticket_id):
        return self.states.get(ticket_id)

    async def save(self, state):
        self.saves += 1
        self.states[state.ticket_id] = state
        return state

    async def delete_by_ticket(self, ticket_id):
        return self.states.pop(ticket_id, None) is not None

    async def list_unfrozen(self):
        return [s for s in self.states.values() if not s.is_frozen]

    async def list_all(self):
        return list(self.states.values())


class FakeClock:
    """Controllable ``now`` for the SLA tracker."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ========== Fixtures ==========

@pytest.fixture
def entity_store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def cursor() -> InMemoryRoundRobinCursor:
    return InMemoryRoundRobinCursor()


@pytest.fixture
def execution_log() -> InMemoryExecutionLog:
    return InMemoryExecutionLog()


@pytest.fixture
def clock() -> FakeClock:
    # Wednesday
    return FakeClock(datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def locks() -> KeyedLockRegistry:
    return KeyedLockRegistry()


@pytest.fixture
def ticket(entity_store) -> Dict[str, Any]:
    return entity_store.add("ticket", {
        "id": "T-1",
        "title": "VPN down in Berlin office",
        "status": "open",
        "priority": "high",
        "category": "network",
        "location": "Berlin",
        "assigned_to_id": None,
    })


def technician(user_id: str, active: int = 0, available: bool = True, skills=None, location=None):
    return TechnicianWorkload(
        user_id=user_id,
        active_ticket_count=active,
        is_available=available,
        name=user_id.upper(),
        skills=list(skills or []),
        location=location,
    )


def build_assignment_service(entity_store, rules=None, cursor=None, fallback=False):
    return AssignmentService(
        InMemoryAssignmentRuleRepository(rules),
        entity_store,
        AssignmentStrategyResolver(cursor or InMemoryRoundRobinCursor()),
        fallback_least_busy=fallback,
    )


def build_dispatcher(entity_store, transport, rules, execution_log=None, max_depth=5, assignment_service=None):
    executor = ActionExecutor(
        entity_store,
        transport,
        assignment_service=assignment_service,
        timeout_seconds=1.0,
        system_author_id="system",
    )
    return WorkflowDispatcher(
        InMemoryWorkflowRuleRepository(rules),
        executor,
        entity_store,
        execution_log=execution_log,
        max_depth=max_depth,
    )


def build_tracker(entity_store, transport, policies, clock, states=None, locks=None, lock=None):
    executor = ActionExecutor(entity_store, transport, timeout_seconds=1.0, system_author_id="system")
    return SLATracker(
        InMemorySLAPolicyRepository(policies),
        states or InMemoryTicketSLARepository(),
        entity_store,
        executor=executor,
        clock=clock,
        lock=lock or asyncio.Lock(),
        locks=locks or KeyedLockRegistry(),
    )


def policy(priority="critical", response=30, resolution=240, **kwargs):
    """Wall-clock SLA policy escalating to ``lead-1``."""
    values = dict(
        id=f"p-{priority}",
        name=f"{priority} policy",
        priority=priority,
        response_time_minutes=response,
        resolution_time_minutes=resolution,
        business_hours_only=False,
        escalation_enabled=True,
        escalation_user_id="lead-1",
        notify_before_minutes=30,
    )
    values.update(kwargs)
    return SLAPolicy(**values)
