"""
Workflow Application DTOs
=========================

Data Transfer Objects for the workflow and assignment API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Rule conditions and actions reuse the
domain value objects so the wire format and the stored format match.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from deskflow.workflows.domain import (
    Action, AssignmentRule, Condition, WorkflowExecution, WorkflowRule
)


# ========== Type Aliases for Literals ==========
EntityTypeStr = Literal["ticket", "asset"]
TriggerStr = Literal["created", "status_changed", "assigned", "priority_changed", "updated"]
AssignmentTypeStr = Literal["round_robin", "least_busy", "skill_based", "location_based", "specific_user"]
EventKindStr = Literal["created", "updated", "responded"]
ExecutionStatusStr = Literal["completed", "partial", "skipped", "failed"]


# ========== Workflow Template DTOs ==========

class WorkflowTemplateCreate(BaseModel):
    """Request model for creating a workflow rule."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    entity_type: EntityTypeStr
    trigger: TriggerStr
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(..., min_length=1, description="Executed in order")
    priority: int = Field(default=0, description="Higher runs first")
    is_active: bool = True


class WorkflowTemplateUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    entity_type: Optional[EntityTypeStr] = None
    trigger: Optional[TriggerStr] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = Field(None, min_length=1)
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class WorkflowExecutionResponse(BaseModel):
    id: Optional[str] = None
    workflow_id: str
    entity_type: str
    entity_id: str
    trigger: str
    status: ExecutionStatusStr
    depth: int = 0
    result: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    executed_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, execution: WorkflowExecution) -> "WorkflowExecutionResponse":
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            entity_type=execution.entity_type,
            entity_id=execution.entity_id,
            trigger=execution.trigger,
            status=execution.status,
            depth=execution.depth,
            result=execution.result,
            error=execution.error,
            executed_at=execution.executed_at,
            completed_at=execution.completed_at
        )


class WorkflowTemplateResponse(BaseModel):
    """Response model for a workflow rule."""
    id: str
    name: str
    description: Optional[str] = None
    entity_type: EntityTypeStr
    trigger: TriggerStr
    conditions: List[Condition]
    actions: List[Action]
    priority: int
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    executions: Optional[List[WorkflowExecutionResponse]] = Field(
        None,
        description="Most recent executions (detail view only)"
    )

    @classmethod
    def from_domain(
        cls,
        rule: WorkflowRule,
        executions: Optional[List[WorkflowExecution]] = None
    ) -> "WorkflowTemplateResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            entity_type=rule.entity_type,
            trigger=rule.trigger,
            conditions=rule.conditions,
            actions=rule.actions,
            priority=rule.priority,
            is_active=rule.is_active,
            created_by=rule.created_by,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
            executions=(
                [WorkflowExecutionResponse.from_domain(e) for e in executions]
                if executions is not None else None
            )
        )


class WorkflowTestRequest(BaseModel):
    """
    Dry-run a rule against an entity.

    Either ``entity_id`` (loaded from the store) or an explicit ``entity``
    snapshot must be provided.
    """
    entity_id: Optional[str] = None
    entity: Optional[Dict[str, Any]] = None
    previous: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def require_entity(self) -> "WorkflowTestRequest":
        if not self.entity_id and self.entity is None:
            raise ValueError("Provide entity_id or entity")
        return self


class ConditionResult(BaseModel):
    field: str
    operator: str
    value: Any
    matched: bool


class WorkflowTestResponse(BaseModel):
    rule_id: str
    matched: bool
    conditions: List[ConditionResult]
    actions: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Actions that would run (not executed)"
    )


# ========== Assignment Rule DTOs ==========

class AssignmentRuleCreate(BaseModel):
    """Request model for creating an assignment rule."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    assignment_type: AssignmentTypeStr
    conditions: List[Condition] = Field(default_factory=list)
    target_users: List[str] = Field(default_factory=list)
    required_skills: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    priority: int = 0
    is_active: bool = True


class AssignmentRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    assignment_type: Optional[AssignmentTypeStr] = None
    conditions: Optional[List[Condition]] = None
    target_users: Optional[List[str]] = None
    required_skills: Optional[List[str]] = None
    location: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class AssignmentRuleResponse(BaseModel):
    """Response model for an assignment rule."""
    id: str
    name: str
    description: Optional[str] = None
    assignment_type: AssignmentTypeStr
    conditions: List[Condition]
    target_users: List[str]
    required_skills: List[str]
    location: Optional[str] = None
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, rule: AssignmentRule) -> "AssignmentRuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            assignment_type=rule.assignment_type,
            conditions=rule.conditions,
            target_users=rule.target_users,
            required_skills=rule.required_skills,
            location=rule.location,
            priority=rule.priority,
            is_active=rule.is_active,
            created_at=rule.created_at,
            updated_at=rule.updated_at
        )


class TechnicianWorkloadResponse(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    active_tickets: int
    is_available: bool
    skills: List[str] = Field(default_factory=list)
    location: Optional[str] = None


class AssignmentStatsResponse(BaseModel):
    total_rules: int
    active_rules: int
    total_technicians: int
    available_technicians: int
    technician_workload: List[TechnicianWorkloadResponse]


# ========== Lifecycle Event DTOs ==========

class EntityEventRequest(BaseModel):
    """
    Lifecycle event reported by the CRUD layer after a committed change.

    ``current`` defaults to the stored entity; ``previous`` is required
    for ``updated`` events.
    """
    entity_type: EntityTypeStr
    entity_id: str = Field(..., min_length=1)
    kind: EventKindStr
    previous: Optional[Dict[str, Any]] = None
    current: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def require_previous_for_updates(self) -> "EntityEventRequest":
        if self.kind == "updated" and self.previous is None:
            raise ValueError("updated events need the previous snapshot")
        return self


class EntityEventResponse(BaseModel):
    entity_type: str
    entity_id: str
    kind: str
    triggers: List[str]
    reports: List[Dict[str, Any]]
    assignment: Optional[Dict[str, Any]] = None
    sla: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)
