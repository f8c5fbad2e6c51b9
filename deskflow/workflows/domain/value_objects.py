"""
Workflow Value Objects
======================

Immutable value objects for the workflow domain: rule conditions, the
tagged union of rule actions, and the pure condition evaluator.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import date, datetime
from typing import Annotated, Any, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from deskflow.config import ConditionOperator, ActionType
from deskflow.core import EvaluationException
from deskflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Type Aliases for Literals ==========
OperatorStr = Literal[
    "equals", "not_equals", "contains", "not_contains",
    "greater_than", "less_than", "in", "not_in"
]
PriorityStr = Literal["critical", "high", "medium", "low"]


class Condition(BaseModel):
    """
    A single (field, operator, value) predicate over an entity snapshot.

    ``value`` is a string for scalar operators; for ``in``/``not_in`` it may
    be a list or a comma-delimited string.
    """
    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1, description="Snapshot key (dot notation allowed)")
    operator: OperatorStr = Field(..., description="Comparison operator")
    value: Union[str, List[str]] = Field(default="", description="Comparison value")

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        """Accept numbers/booleans from JSON forms and store them as strings."""
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return [_stringify(item) for item in v]
        if isinstance(v, (bool, int, float)):
            return _stringify(v)
        return v

    def value_set(self) -> List[str]:
        """Membership set for in/not_in."""
        if isinstance(self.value, list):
            items = self.value
        else:
            items = self.value.split(",")
        return [item.strip() for item in items if item.strip()]

    def scalar_value(self) -> str:
        """Scalar comparison value (lists are joined with commas)."""
        if isinstance(self.value, list):
            return ",".join(self.value)
        return self.value


# ========== Actions (tagged union keyed by ``type``) ==========

class AssignParams(BaseModel):
    """Assign to a fixed user, or let the assignment rules pick one."""
    user_id: Optional[str] = Field(default=None, min_length=1)
    use_assignment_rules: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "AssignParams":
        if not self.user_id and not self.use_assignment_rules:
            raise ValueError("assign requires user_id or use_assignment_rules=true")
        return self


class ChangeStatusParams(BaseModel):
    status: str = Field(..., min_length=1)


class ChangePriorityParams(BaseModel):
    priority: PriorityStr


class AddCommentParams(BaseModel):
    comment: str = Field(..., min_length=1)


class MessageParams(BaseModel):
    """Templated message for a set of user ids (``{field}`` placeholders)."""
    message: str = Field(..., min_length=1)
    recipients: List[str] = Field(..., min_length=1)


class AssignAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["assign"] = ActionType.ASSIGN
    params: AssignParams


class ChangeStatusAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["change_status"] = ActionType.CHANGE_STATUS
    params: ChangeStatusParams


class ChangePriorityAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["change_priority"] = ActionType.CHANGE_PRIORITY
    params: ChangePriorityParams


class AddCommentAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["add_comment"] = ActionType.ADD_COMMENT
    params: AddCommentParams


class SendNotificationAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["send_notification"] = ActionType.SEND_NOTIFICATION
    params: MessageParams


class SendWhatsAppAction(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["send_whatsapp"] = ActionType.SEND_WHATSAPP
    params: MessageParams


Action = Annotated[
    Union[
        AssignAction,
        ChangeStatusAction,
        ChangePriorityAction,
        AddCommentAction,
        SendNotificationAction,
        SendWhatsAppAction,
    ],
    Field(discriminator="type"),
]

# Actions that write to the entity and can cascade into new triggers
MUTATING_ACTION_TYPES = frozenset({
    ActionType.ASSIGN, ActionType.CHANGE_STATUS, ActionType.CHANGE_PRIORITY
})

_conditions_adapter = TypeAdapter(List[Condition])
_actions_adapter = TypeAdapter(List[Action])


def parse_conditions(data: Optional[Iterable[Any]]) -> List[Condition]:
    """Parse stored/submitted condition dicts."""
    return _conditions_adapter.validate_python(list(data or []))


def parse_actions(data: Optional[Iterable[Any]]) -> List[Action]:
    """Parse stored/submitted action dicts into the tagged union."""
    return _actions_adapter.validate_python(list(data or []))


def dump_conditions(conditions: Iterable[Condition]) -> List[dict]:
    return [c.model_dump() for c in conditions]


def dump_actions(actions: Iterable[Any]) -> List[dict]:
    return [a.model_dump() for a in actions]


# ========== Condition Evaluator ==========

def _stringify(value: Any) -> str:
    """Render a snapshot value the way conditions compare it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return ",".join(_stringify(item) for item in value)
    return str(value)


class ConditionEvaluator:
    """
    Pure predicate matcher over an entity snapshot.

    Conditions are conjunctive: a rule matches only if every condition
    holds, and an empty list always matches. Evaluation never raises;
    a condition that cannot be evaluated is treated as not matching.
    """

    def matches(
        self,
        conditions: Iterable[Condition],
        snapshot: Mapping[str, Any]
    ) -> bool:
        """True when every condition holds for ``snapshot``."""
        return all(self.evaluate(condition, snapshot) for condition in conditions)

    def explain(
        self,
        conditions: Iterable[Condition],
        snapshot: Mapping[str, Any]
    ) -> List[Tuple[Condition, bool]]:
        """Per-condition results, used by the dry-run endpoint."""
        return [(condition, self.evaluate(condition, snapshot)) for condition in conditions]

    def evaluate(self, condition: Condition, snapshot: Mapping[str, Any]) -> bool:
        """Evaluate a single condition, failing closed."""
        actual = _stringify(self._get_field_value(condition.field, snapshot))

        try:
            return self._compare(condition, actual)
        except EvaluationException as e:
            logger.warning(
                "Condition evaluation failed, treating as non-matching",
                extra={"field": e.field, "operator": e.operator, "error": e.message}
            )
            return False

    def _get_field_value(self, field_path: str, snapshot: Mapping[str, Any]) -> Any:
        """
        Look up ``field_path`` in the snapshot.

        Exact keys win; otherwise dot notation walks nested mappings
        ("asset.location" -> snapshot["asset"]["location"]).
        """
        if field_path in snapshot:
            return snapshot[field_path]

        value: Any = snapshot
        for part in field_path.split("."):
            if isinstance(value, Mapping):
                value = value.get(part)
            else:
                return None
        return value

    def _compare(self, condition: Condition, actual: str) -> bool:
        operator = condition.operator

        if operator == ConditionOperator.EQUALS:
            return actual == condition.scalar_value()

        elif operator == ConditionOperator.NOT_EQUALS:
            return actual != condition.scalar_value()

        elif operator == ConditionOperator.CONTAINS:
            return condition.scalar_value().lower() in actual.lower()

        elif operator == ConditionOperator.NOT_CONTAINS:
            return condition.scalar_value().lower() not in actual.lower()

        elif operator == ConditionOperator.GREATER_THAN:
            left, right = self._as_numbers(condition, actual)
            return left > right

        elif operator == ConditionOperator.LESS_THAN:
            left, right = self._as_numbers(condition, actual)
            return left < right

        elif operator == ConditionOperator.IN:
            return actual in condition.value_set()

        elif operator == ConditionOperator.NOT_IN:
            return actual not in condition.value_set()

        raise EvaluationException(condition.field, operator, "unknown operator")

    @staticmethod
    def _as_numbers(condition: Condition, actual: str) -> Tuple[float, float]:
        try:
            return float(actual), float(condition.scalar_value())
        except ValueError:
            raise EvaluationException(
                condition.field,
                condition.operator,
                f"non-numeric operands {actual!r} and {condition.scalar_value()!r}"
            )
