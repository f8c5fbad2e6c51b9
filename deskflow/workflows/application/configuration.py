"""
Rule Configuration Services
===========================

Validated CRUD over workflow rules and assignment rules. Malformed rules
are rejected here with ConfigurationException and never reach the
dispatcher or the assignment service.
"""

from typing import Any, Dict, List, Optional

from deskflow.core import ResourceNotFoundException
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.application.services import (
    IAssignmentRuleRepository, IExecutionLogRepository, IWorkflowRuleRepository
)
from deskflow.workflows.domain import AssignmentRule, WorkflowExecution, WorkflowRule

logger = get_logger(__name__)

RECENT_EXECUTIONS_LIMIT = 10


class WorkflowRuleService:
    """CRUD for workflow rules plus execution history lookups."""

    def __init__(
        self,
        repository: IWorkflowRuleRepository,
        execution_log: Optional[IExecutionLogRepository] = None
    ):
        self._repo = repository
        self._execution_log = execution_log

    async def list_rules(self) -> List[WorkflowRule]:
        return await self._repo.list_all()

    async def get_rule(self, rule_id: str) -> WorkflowRule:
        rule = await self._repo.get(rule_id)
        if rule is None:
            raise ResourceNotFoundException("WorkflowRule", rule_id)
        return rule

    async def create_rule(self, rule: WorkflowRule) -> WorkflowRule:
        rule.validate()
        created = await self._repo.create(rule)
        logger.info(
            "Workflow rule created",
            extra={
                "rule_id": created.id,
                "entity_type": created.entity_type,
                "trigger": created.trigger,
                "action_count": len(created.actions)
            }
        )
        return created

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> WorkflowRule:
        rule = await self.get_rule(rule_id)
        for key, value in changes.items():
            setattr(rule, key, value)
        rule.validate()
        return await self._repo.update(rule)

    async def toggle_rule(self, rule_id: str) -> WorkflowRule:
        rule = await self.get_rule(rule_id)
        rule.is_active = not rule.is_active
        updated = await self._repo.update(rule)
        logger.info("Workflow rule toggled", extra={"rule_id": rule_id, "is_active": updated.is_active})
        return updated

    async def delete_rule(self, rule_id: str) -> None:
        if not await self._repo.delete(rule_id):
            raise ResourceNotFoundException("WorkflowRule", rule_id)
        logger.info("Workflow rule deleted", extra={"rule_id": rule_id})

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[WorkflowExecution]:
        if self._execution_log is None:
            return []
        return await self._execution_log.list(workflow_id=workflow_id, status=status, limit=limit)

    async def recent_executions(self, rule_id: str) -> List[WorkflowExecution]:
        return await self.list_executions(workflow_id=rule_id, limit=RECENT_EXECUTIONS_LIMIT)


class AssignmentRuleService:
    """CRUD for assignment rules."""

    def __init__(self, repository: IAssignmentRuleRepository):
        self._repo = repository

    async def list_rules(self) -> List[AssignmentRule]:
        return await self._repo.list_all()

    async def get_rule(self, rule_id: str) -> AssignmentRule:
        rule = await self._repo.get(rule_id)
        if rule is None:
            raise ResourceNotFoundException("AssignmentRule", rule_id)
        return rule

    async def create_rule(self, rule: AssignmentRule) -> AssignmentRule:
        rule.validate()
        created = await self._repo.create(rule)
        logger.info(
            "Assignment rule created",
            extra={"rule_id": created.id, "assignment_type": created.assignment_type}
        )
        return created

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> AssignmentRule:
        rule = await self.get_rule(rule_id)
        for key, value in changes.items():
            setattr(rule, key, value)
        rule.validate()
        return await self._repo.update(rule)

    async def toggle_rule(self, rule_id: str) -> AssignmentRule:
        rule = await self.get_rule(rule_id)
        rule.is_active = not rule.is_active
        return await self._repo.update(rule)

    async def delete_rule(self, rule_id: str) -> None:
        if not await self._repo.delete(rule_id):
            raise ResourceNotFoundException("AssignmentRule", rule_id)
        logger.info("Assignment rule deleted", extra={"rule_id": rule_id})
