"""
Workflow Domain Entities
========================

Pure Python domain entities for workflow automation and auto-assignment.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from deskflow.config import (
    AssignmentType, ActionType, EntityType, ExecutionStatus,
    STATUSES_BY_ENTITY, VALID_ASSIGNMENT_TYPES, VALID_ENTITY_TYPES, VALID_TRIGGERS
)
from deskflow.core import ConfigurationException
from deskflow.workflows.domain.value_objects import Action, Condition


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowRule:
    """
    Automation rule run when an entity lifecycle event fires.

    Rules with a higher ``priority`` run first; ties keep creation order.
    """

    id: str
    name: str
    entity_type: str
    trigger: str
    actions: List[Action]
    conditions: List[Condition] = field(default_factory=list)
    priority: int = 0
    is_active: bool = True
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def validate(self) -> None:
        """Reject rules the dispatcher could not run."""
        if self.entity_type not in VALID_ENTITY_TYPES:
            raise ConfigurationException(f"Unknown entity type '{self.entity_type}'")
        if self.trigger not in VALID_TRIGGERS:
            raise ConfigurationException(f"Unknown trigger '{self.trigger}'")
        if not self.actions:
            raise ConfigurationException(
                "A workflow rule needs at least one action",
                {"rule": self.name}
            )

        allowed_statuses = STATUSES_BY_ENTITY[self.entity_type]
        for index, action in enumerate(self.actions):
            if action.type == ActionType.CHANGE_STATUS and action.params.status not in allowed_statuses:
                raise ConfigurationException(
                    f"Action {index}: '{action.params.status}' is not a valid {self.entity_type} status",
                    {"action_index": index, "allowed": allowed_statuses}
                )
            if action.type == ActionType.CHANGE_PRIORITY and self.entity_type != EntityType.TICKET:
                raise ConfigurationException(
                    f"Action {index}: change_priority only applies to tickets",
                    {"action_index": index}
                )
            if (
                action.type == ActionType.ASSIGN
                and action.params.use_assignment_rules
                and self.entity_type != EntityType.TICKET
            ):
                raise ConfigurationException(
                    f"Action {index}: assignment rules only apply to tickets",
                    {"action_index": index}
                )


@dataclass
class AssignmentRule:
    """
    Rule selecting a technician for a ticket.

    Evaluated in priority order; the first matching rule that yields a
    technician wins.
    """

    id: str
    name: str
    assignment_type: str
    conditions: List[Condition] = field(default_factory=list)
    target_users: List[str] = field(default_factory=list)
    required_skills: List[str] = field(default_factory=list)
    location: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def validate(self) -> None:
        """Each strategy needs its own inputs to be present."""
        if self.assignment_type not in VALID_ASSIGNMENT_TYPES:
            raise ConfigurationException(f"Unknown assignment type '{self.assignment_type}'")

        if (
            self.assignment_type in (AssignmentType.ROUND_ROBIN, AssignmentType.SPECIFIC_USER)
            and not self.target_users
        ):
            raise ConfigurationException(
                f"{self.assignment_type} rules need at least one target user",
                {"rule": self.name}
            )
        if self.assignment_type == AssignmentType.SKILL_BASED and not self.required_skills:
            raise ConfigurationException(
                "skill_based rules need at least one required skill",
                {"rule": self.name}
            )
        if self.assignment_type == AssignmentType.LOCATION_BASED and not (self.location or "").strip():
            raise ConfigurationException(
                "location_based rules need a location",
                {"rule": self.name}
            )
        if len(set(self.target_users)) != len(self.target_users):
            raise ConfigurationException(
                "target users must not repeat",
                {"rule": self.name}
            )


@dataclass
class TechnicianWorkload:
    """Derived view of a technician used for assignment decisions."""

    user_id: str
    active_ticket_count: int
    is_available: bool
    name: Optional[str] = None
    email: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    location: Optional[str] = None

    def has_skills(self, required: List[str]) -> bool:
        """Case-insensitive check that every required skill is present."""
        own = {skill.strip().lower() for skill in self.skills}
        return all(skill.strip().lower() in own for skill in required)

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "active_tickets": self.active_ticket_count,
            "is_available": self.is_available,
            "skills": list(self.skills),
            "location": self.location,
        }


# ========== Execution reporting ==========

@dataclass
class ActionOutcome:
    """Result of executing one action of a rule."""

    index: int
    action_type: str
    success: bool
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "type": self.action_type,
            "success": self.success,
            "detail": self.detail,
            "error": self.error,
            "reason": self.reason,
        }


@dataclass
class RuleOutcome:
    """Result of evaluating one rule against an entity."""

    rule_id: str
    rule_name: str
    priority: int
    matched: bool
    actions: List[ActionOutcome] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.matched:
            return ExecutionStatus.SKIPPED
        failures = sum(1 for a in self.actions if not a.success)
        if failures == 0:
            return ExecutionStatus.COMPLETED
        if failures == len(self.actions):
            return ExecutionStatus.FAILED
        return ExecutionStatus.PARTIAL

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "priority": self.priority,
            "matched": self.matched,
            "status": self.status,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class AssignmentOutcome:
    """
    Result of running the assignment rules for a ticket.

    ``status`` is ``assigned``, ``already_assigned`` or ``unassigned`` (no
    eligible technician; reported, never raised).
    """

    status: str
    user_id: Optional[str] = None
    rule_id: Optional[str] = None
    strategy: Optional[str] = None
    rules_evaluated: int = 0

    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    UNASSIGNED = "unassigned"

    @property
    def assigned(self) -> bool:
        return self.status == self.ASSIGNED

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "user_id": self.user_id,
            "rule_id": self.rule_id,
            "strategy": self.strategy,
            "rules_evaluated": self.rules_evaluated,
        }


@dataclass
class WorkflowExecution:
    """Persisted history record of one rule evaluation."""

    workflow_id: str
    entity_type: str
    entity_id: str
    trigger: str
    status: str
    depth: int = 0
    result: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    id: Optional[str] = None
    executed_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def from_outcome(
        cls,
        outcome: RuleOutcome,
        entity_type: str,
        entity_id: str,
        trigger: str,
        depth: int,
        executed_at: datetime,
        error: Optional[str] = None
    ) -> "WorkflowExecution":
        return cls(
            workflow_id=outcome.rule_id,
            entity_type=entity_type,
            entity_id=entity_id,
            trigger=trigger,
            status=ExecutionStatus.FAILED if error else outcome.status,
            depth=depth,
            result=outcome.to_dict(),
            error=error,
            executed_at=executed_at,
            completed_at=_utcnow()
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "trigger": self.trigger,
            "status": self.status,
            "depth": self.depth,
            "result": self.result,
            "error": self.error,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class ExecutionReport:
    """Everything one dispatch did, including cascaded dispatches."""

    entity_type: str
    entity_id: str
    trigger: str
    depth: int = 0
    rules: List[RuleOutcome] = field(default_factory=list)
    cascades: List["ExecutionReport"] = field(default_factory=list)
    assignment: Optional[AssignmentOutcome] = None
    error: Optional[str] = None

    @property
    def rules_matched(self) -> int:
        return sum(1 for r in self.rules if r.matched)

    @property
    def actions_failed(self) -> int:
        own = sum(1 for r in self.rules for a in r.actions if not a.success)
        return own + sum(c.actions_failed for c in self.cascades)

    def executed_actions(self) -> List[ActionOutcome]:
        """Own action outcomes followed by those of cascaded dispatches."""
        outcomes = [a for r in self.rules for a in r.actions]
        for cascade in self.cascades:
            outcomes.extend(cascade.executed_actions())
        return outcomes

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "trigger": self.trigger,
            "depth": self.depth,
            "rules_evaluated": len(self.rules),
            "rules_matched": self.rules_matched,
            "actions_failed": self.actions_failed,
            "rules": [r.to_dict() for r in self.rules],
            "cascades": [c.to_dict() for c in self.cascades],
            "assignment": self.assignment.to_dict() if self.assignment else None,
            "error": self.error,
        }
