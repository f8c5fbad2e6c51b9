"""
Workflow Application Services
=============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- ActionExecutor: applies one action to an entity through the collaborators
- WorkflowDispatcher: runs the active rules for an entity lifecycle event

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from deskflow.config import (
    settings, ActionType, EntityType, NotificationChannel, Trigger,
    STATUSES_BY_ENTITY, VALID_PRIORITIES
)
from deskflow.core import (
    ApplicationException, ActionException, RecursionLimitException
)
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.domain import (
    Action, ActionOutcome, AssignmentRule, ConditionEvaluator, ExecutionReport,
    MUTATING_ACTION_TYPES, RuleOutcome, TechnicianWorkload, WorkflowExecution,
    WorkflowRule
)

logger = get_logger(__name__)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IEntityStore(ABC):
    """Interface for ticket/asset/user persistence owned by the CRUD layer."""

    @abstractmethod
    async def get_entity(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of an entity, or None if it does not exist."""

    @abstractmethod
    async def update_entity(
        self,
        entity_type: str,
        entity_id: str,
        patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Apply ``patch`` and return the new snapshot."""

    @abstractmethod
    async def list_technicians(self) -> List[TechnicianWorkload]:
        """Technicians with their current workload and availability."""

    @abstractmethod
    async def list_tickets(self, statuses: List[str]) -> List[Dict[str, Any]]:
        """Ticket snapshots in any of ``statuses``."""


class IMessagingTransport(ABC):
    """Interface for notification queueing and system comments."""

    @abstractmethod
    async def send(
        self,
        message: str,
        recipients: List[str],
        *,
        channel: str = NotificationChannel.IN_APP,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Dict[str, Any]:
        """Accept a message for delivery (not a delivery confirmation)."""

    @abstractmethod
    async def add_comment(
        self,
        entity_type: str,
        entity_id: str,
        author_system_id: str,
        text: str
    ) -> str:
        """Create a system-authored comment and return its id."""


# ========== Repository Interfaces ==========

class IWorkflowRuleRepository(ABC):
    """Interface for workflow rule (template) storage."""

    @abstractmethod
    async def list_active(self, entity_type: str, trigger: str) -> List[WorkflowRule]:
        """Active rules for the event, in creation order."""

    @abstractmethod
    async def list_all(self) -> List[WorkflowRule]:
        """All rules, highest priority first, newest first within a priority."""

    @abstractmethod
    async def get(self, rule_id: str) -> Optional[WorkflowRule]:
        """Get a rule by id."""

    @abstractmethod
    async def create(self, rule: WorkflowRule) -> WorkflowRule:
        """Persist a new rule."""

    @abstractmethod
    async def update(self, rule: WorkflowRule) -> WorkflowRule:
        """Persist changes to an existing rule."""

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        """Delete a rule; False when it did not exist."""


class IAssignmentRuleRepository(ABC):
    """Interface for assignment rule storage."""

    @abstractmethod
    async def list_active(self) -> List[AssignmentRule]:
        """Active rules in creation order."""

    @abstractmethod
    async def list_all(self) -> List[AssignmentRule]:
        """All rules, highest priority first."""

    @abstractmethod
    async def get(self, rule_id: str) -> Optional[AssignmentRule]:
        """Get a rule by id."""

    @abstractmethod
    async def create(self, rule: AssignmentRule) -> AssignmentRule:
        """Persist a new rule."""

    @abstractmethod
    async def update(self, rule: AssignmentRule) -> AssignmentRule:
        """Persist changes to an existing rule."""

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        """Delete a rule; False when it did not exist."""


class IRoundRobinCursor(ABC):
    """Persisted per-rule rotation cursor."""

    @abstractmethod
    async def advance(self, rule_id: str, size: int) -> int:
        """
        Atomically move the cursor to ``(cursor + 1) % size`` and return
        the position it pointed at before the move.
        """


class IExecutionLogRepository(ABC):
    """Interface for workflow execution history."""

    @abstractmethod
    async def record(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Store one rule evaluation."""

    @abstractmethod
    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[WorkflowExecution]:
        """Newest executions first."""


# ========== Helpers ==========

# Bookkeeping fields that change on every write and never count as a change
IGNORED_DIFF_FIELDS = frozenset({"updated_at"})


def derive_triggers(previous: Mapping[str, Any], current: Mapping[str, Any]) -> List[str]:
    """
    Lifecycle triggers implied by the difference between two snapshots.

    ``updated`` accompanies any real change; ``assigned`` only fires when
    the new assignee is non-empty.
    """
    triggers = []
    if previous.get("status") != current.get("status"):
        triggers.append(Trigger.STATUS_CHANGED)
    if previous.get("priority") != current.get("priority"):
        triggers.append(Trigger.PRIORITY_CHANGED)
    if current.get("assigned_to_id") and previous.get("assigned_to_id") != current.get("assigned_to_id"):
        triggers.append(Trigger.ASSIGNED)

    keys = (set(previous) | set(current)) - IGNORED_DIFF_FIELDS
    if any(previous.get(key) != current.get(key) for key in keys):
        triggers.append(Trigger.UPDATED)

    return triggers


class _TemplateValues(dict):
    """format_map source that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_template(template: str, snapshot: Optional[Mapping[str, Any]]) -> str:
    """Fill ``{field}`` placeholders from the entity snapshot."""
    if not snapshot:
        return template
    values = _TemplateValues({k: ("" if v is None else v) for k, v in snapshot.items()})
    try:
        return template.format_map(values)
    except (ValueError, IndexError, AttributeError, KeyError):
        return template


# ========== Application Services ==========

class ActionExecutor:
    """
    Applies a single action to an entity.

    Every invocation is bounded by ``timeout_seconds``. Any failure comes
    out as an ``ActionException`` so callers can isolate it.
    """

    def __init__(
        self,
        entity_store: IEntityStore,
        transport: IMessagingTransport,
        assignment_service=None,  # AssignmentService from application.assignment
        timeout_seconds: Optional[float] = None,
        system_author_id: Optional[str] = None
    ):
        self._entity_store = entity_store
        self._transport = transport
        self._assignment_service = assignment_service
        self._timeout = timeout_seconds or settings.action_timeout_seconds
        self._system_author_id = system_author_id or settings.system_author_id

    async def execute(
        self,
        action: Action,
        entity_id: str,
        entity_type: str,
        snapshot: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Execute ``action`` against the entity.

        Returns:
            Detail dict describing what was done

        Raises:
            ActionException: invalid params, timeout or collaborator failure
        """
        try:
            return await asyncio.wait_for(
                self._apply(action, entity_id, entity_type, snapshot),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise ActionException(
                ActionException.TIMEOUT,
                f"{action.type} timed out after {self._timeout}s",
                action.type
            )
        except ActionException:
            raise
        except ApplicationException as e:
            raise ActionException(ActionException.COLLABORATOR_ERROR, e.message, action.type) from e
        except Exception as e:
            raise ActionException(ActionException.COLLABORATOR_ERROR, str(e), action.type) from e

    async def _apply(
        self,
        action: Action,
        entity_id: str,
        entity_type: str,
        snapshot: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        if action.type == ActionType.ASSIGN:
            return await self._assign(action, entity_id, entity_type, snapshot)

        elif action.type == ActionType.CHANGE_STATUS:
            allowed = STATUSES_BY_ENTITY.get(entity_type, [])
            if action.params.status not in allowed:
                raise ActionException(
                    ActionException.INVALID_PARAMS,
                    f"'{action.params.status}' is not a valid {entity_type} status",
                    action.type,
                    {"allowed": allowed}
                )
            return await self._set_field(entity_type, entity_id, "status", action.params.status, snapshot)

        elif action.type == ActionType.CHANGE_PRIORITY:
            if entity_type != EntityType.TICKET or action.params.priority not in VALID_PRIORITIES:
                raise ActionException(
                    ActionException.INVALID_PARAMS,
                    f"Cannot set priority '{action.params.priority}' on {entity_type}",
                    action.type
                )
            return await self._set_field(entity_type, entity_id, "priority", action.params.priority, snapshot)

        elif action.type == ActionType.ADD_COMMENT:
            snapshot = await self._snapshot(entity_type, entity_id, snapshot)
            text = render_template(action.params.comment, snapshot)
            comment_id = await self._transport.add_comment(
                entity_type, entity_id, self._system_author_id, text
            )
            return {"comment_id": comment_id}

        elif action.type in (ActionType.SEND_NOTIFICATION, ActionType.SEND_WHATSAPP):
            snapshot = await self._snapshot(entity_type, entity_id, snapshot)
            channel = (
                NotificationChannel.WHATSAPP
                if action.type == ActionType.SEND_WHATSAPP
                else NotificationChannel.IN_APP
            )
            message = render_template(action.params.message, snapshot)
            accepted = await self._transport.send(
                message,
                list(action.params.recipients),
                channel=channel,
                entity_type=entity_type,
                entity_id=entity_id,
                title="Workflow Notification"
            )
            return {"channel": channel, "recipients": len(action.params.recipients), **accepted}

        raise ActionException(ActionException.UNSUPPORTED, f"Unknown action type '{action.type}'")

    async def _assign(
        self,
        action: Action,
        entity_id: str,
        entity_type: str,
        snapshot: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        if action.params.user_id:
            return await self._set_field(
                entity_type, entity_id, "assigned_to_id", action.params.user_id, snapshot
            )

        if self._assignment_service is None or entity_type != EntityType.TICKET:
            raise ActionException(
                ActionException.UNSUPPORTED,
                "Rule-based assignment is only available for tickets",
                action.type
            )

        snapshot = await self._snapshot(entity_type, entity_id, snapshot)
        outcome = await self._assignment_service.assign(snapshot, ignore_existing=True)
        return {"assigned": outcome.assigned, **outcome.to_dict()}

    async def _set_field(
        self,
        entity_type: str,
        entity_id: str,
        field_name: str,
        value: str,
        snapshot: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        snapshot = await self._snapshot(entity_type, entity_id, snapshot)
        if snapshot.get(field_name) == value:
            return {field_name: value, "changed": False}

        await self._entity_store.update_entity(entity_type, entity_id, {field_name: value})
        return {field_name: value, "changed": True}

    async def _snapshot(
        self,
        entity_type: str,
        entity_id: str,
        snapshot: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        if snapshot is not None:
            return snapshot
        found = await self._entity_store.get_entity(entity_type, entity_id)
        if found is None:
            raise ActionException(
                ActionException.COLLABORATOR_ERROR,
                f"{entity_type} {entity_id} not found"
            )
        return found


ChangeObserver = Callable[[str, Dict[str, Any], Dict[str, Any]], Awaitable[None]]


class WorkflowDispatcher:
    """
    Runs active workflow rules for an entity lifecycle event.

    1. Load active rules for (entity_type, trigger)
    2. Order by priority descending, creation order within a priority
    3. Gate each rule on its conditions
    4. Execute matching rules' actions in declared order, isolating failures
    5. Cascade: a mutating action re-dispatches the triggers it caused,
       one level deeper, up to ``max_depth``
    """

    def __init__(
        self,
        rule_repository: IWorkflowRuleRepository,
        executor: ActionExecutor,
        entity_store: IEntityStore,
        execution_log: Optional[IExecutionLogRepository] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        max_depth: Optional[int] = None
    ):
        self._rule_repo = rule_repository
        self._executor = executor
        self._entity_store = entity_store
        self._execution_log = execution_log
        self._evaluator = evaluator or ConditionEvaluator()
        self._max_depth = max_depth or settings.max_dispatch_depth
        self._observers: List[ChangeObserver] = []

    def add_change_observer(self, observer: ChangeObserver) -> None:
        """Called with (entity_type, before, after) for every cascaded change."""
        self._observers.append(observer)

    async def dispatch(
        self,
        entity_type: str,
        trigger: str,
        snapshot: Dict[str, Any],
        previous: Optional[Dict[str, Any]] = None
    ) -> ExecutionReport:
        """
        Dispatch an entity event.

        Raises:
            RecursionLimitException: cascade exceeded ``max_depth``; the
                partial report is attached as ``exc.report``
        """
        report = ExecutionReport(
            entity_type=entity_type,
            entity_id=str(snapshot.get("id", "")),
            trigger=trigger
        )
        try:
            await self._dispatch(report, snapshot, previous)
        except RecursionLimitException as e:
            report.error = e.message
            e.report = report
            logger.error(
                "Workflow cascade aborted: recursion limit exceeded",
                extra={
                    "entity_type": entity_type,
                    "entity_id": report.entity_id,
                    "trigger": trigger,
                    "max_depth": self._max_depth,
                }
            )
            raise
        return report

    async def _dispatch(
        self,
        report: ExecutionReport,
        snapshot: Dict[str, Any],
        previous: Optional[Dict[str, Any]]
    ) -> None:
        if report.depth > self._max_depth:
            raise RecursionLimitException(
                report.entity_type, report.entity_id, report.trigger, self._max_depth
            )

        rules = await self._rule_repo.list_active(report.entity_type, report.trigger)
        # sorted() is stable, so equal priorities keep creation order
        rules = sorted(rules, key=lambda r: r.priority, reverse=True)

        logger.info(
            "Dispatching workflows",
            extra={
                "entity_type": report.entity_type,
                "entity_id": report.entity_id,
                "trigger": report.trigger,
                "depth": report.depth,
                "rules_found": len(rules),
            }
        )

        context = self._evaluation_snapshot(report.trigger, snapshot, previous)
        current = dict(snapshot)

        for rule in rules:
            outcome = RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.name,
                priority=rule.priority,
                matched=self._evaluator.matches(rule.conditions, context)
            )
            report.rules.append(outcome)
            started_at = datetime.now().astimezone()

            try:
                if outcome.matched:
                    current = await self._run_rule(rule, outcome, report, current)
            except RecursionLimitException as e:
                await self._record(report, outcome, started_at, error=e.message)
                raise

            await self._record(report, outcome, started_at)

    async def _run_rule(
        self,
        rule: WorkflowRule,
        outcome: RuleOutcome,
        report: ExecutionReport,
        current: Dict[str, Any]
    ) -> Dict[str, Any]:
        for index, action in enumerate(rule.actions):
            action_outcome = ActionOutcome(index=index, action_type=action.type, success=True)
            outcome.actions.append(action_outcome)

            try:
                action_outcome.detail = await self._executor.execute(
                    action, report.entity_id, report.entity_type, current
                )
            except ActionException as e:
                self._fail_action(action_outcome, rule, report, e.reason, e.message)
                continue

            if action.type not in MUTATING_ACTION_TYPES:
                continue

            # The write has landed; follow-up failures are recorded on this action
            try:
                current = await self._cascade(report, current)
            except RecursionLimitException:
                raise
            except Exception as e:
                self._fail_action(
                    action_outcome, rule, report,
                    ActionException.COLLABORATOR_ERROR, f"Cascade after write failed: {e}"
                )

        return current

    @staticmethod
    def _fail_action(
        action_outcome: ActionOutcome,
        rule: WorkflowRule,
        report: ExecutionReport,
        reason: str,
        message: str
    ) -> None:
        action_outcome.success = False
        action_outcome.error = message
        action_outcome.reason = reason
        logger.error(
            "Workflow action failed",
            extra={
                "rule_id": rule.id,
                "action_index": action_outcome.index,
                "action_type": action_outcome.action_type,
                "entity_id": report.entity_id,
                "reason": reason,
                "error": message,
            }
        )


    async def _cascade(self, report: ExecutionReport, before: Dict[str, Any]) -> Dict[str, Any]:
        """Re-read the entity and dispatch the triggers the last write caused."""
        after = await self._entity_store.get_entity(report.entity_type, report.entity_id)
        if after is None:
            return before

        triggers = derive_triggers(before, after)
        if not triggers:
            return after

        for observer in self._observers:
            try:
                await observer(report.entity_type, before, after)
            except Exception as e:
                logger.error(
                    "Change observer failed",
                    extra={"entity_id": report.entity_id, "error": str(e)}
                )

        for trigger in triggers:
            child = ExecutionReport(
                entity_type=report.entity_type,
                entity_id=report.entity_id,
                trigger=trigger,
                depth=report.depth + 1
            )
            report.cascades.append(child)
            await self._dispatch(child, after, before)

        # Cascaded rules may have written again
        latest = await self._entity_store.get_entity(report.entity_type, report.entity_id)
        return latest if latest is not None else after

    @staticmethod
    def _evaluation_snapshot(
        trigger: str,
        snapshot: Dict[str, Any],
        previous: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Expose the pre-transition values so conditions can reference them."""
        context = dict(snapshot)
        if previous is not None:
            if trigger == Trigger.STATUS_CHANGED:
                context["previous_status"] = previous.get("status")
            elif trigger == Trigger.PRIORITY_CHANGED:
                context["previous_priority"] = previous.get("priority")
            elif trigger == Trigger.ASSIGNED:
                context["previous_assigned_to_id"] = previous.get("assigned_to_id")
        return context

    async def _record(
        self,
        report: ExecutionReport,
        outcome: RuleOutcome,
        started_at: datetime,
        error: Optional[str] = None
    ) -> None:
        if self._execution_log is None:
            return

        execution = WorkflowExecution.from_outcome(
            outcome,
            entity_type=report.entity_type,
            entity_id=report.entity_id,
            trigger=report.trigger,
            depth=report.depth,
            executed_at=started_at,
            error=error
        )
        try:
            await self._execution_log.record(execution)
        except Exception as e:
            logger.error(
                "Failed to record workflow execution",
                extra={"rule_id": outcome.rule_id, "entity_id": report.entity_id, "error": str(e)}
            )

    async def dry_run(
        self,
        rule: WorkflowRule,
        snapshot: Dict[str, Any],
        previous: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Evaluate a rule without executing anything."""
        context = self._evaluation_snapshot(rule.trigger, snapshot, previous)
        results = self._evaluator.explain(rule.conditions, context)
        matched = all(ok for _, ok in results)
        return {
            "rule_id": rule.id,
            "matched": matched,
            "conditions": [
                {**condition.model_dump(), "matched": ok} for condition, ok in results
            ],
            "actions": [action.model_dump() for action in rule.actions] if matched else [],
        }
