"""
Workflow Infrastructure Repositories
====================================

Concrete implementations of the workflow repository interfaces using
SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
rules, execution history and round-robin cursors.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deskflow.core import RepositoryException
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.application.services import (
    IAssignmentRuleRepository, IExecutionLogRepository, IRoundRobinCursor,
    IWorkflowRuleRepository
)
from deskflow.workflows.domain import (
    AssignmentRule, WorkflowExecution, WorkflowRule,
    dump_actions, dump_conditions, parse_actions, parse_conditions
)
from deskflow.workflows.infrastructure.models import (
    AssignmentRuleModel, WorkflowExecutionModel, WorkflowRuleModel
)

logger = get_logger(__name__)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _workflow_to_domain(model: WorkflowRuleModel) -> WorkflowRule:
    try:
        conditions = parse_conditions(model.conditions)
        actions = parse_actions(model.actions)
    except ValidationError as e:
        raise RepositoryException(
            f"Stored workflow rule {model.id} is malformed",
            {"errors": e.errors(include_url=False)}
        ) from e

    return WorkflowRule(
        id=str(model.id),
        name=model.name,
        description=model.description,
        entity_type=model.entity_type,
        trigger=model.trigger,
        conditions=conditions,
        actions=actions,
        priority=model.priority,
        is_active=model.is_active,
        created_by=model.created_by,
        created_at=model.created_at,
        updated_at=model.updated_at
    )


def _assignment_to_domain(model: AssignmentRuleModel) -> AssignmentRule:
    try:
        conditions = parse_conditions(model.conditions)
    except ValidationError as e:
        raise RepositoryException(
            f"Stored assignment rule {model.id} is malformed",
            {"errors": e.errors(include_url=False)}
        ) from e

    return AssignmentRule(
        id=str(model.id),
        name=model.name,
        description=model.description,
        assignment_type=model.assignment_type,
        conditions=conditions,
        target_users=list(model.target_users or []),
        required_skills=list(model.required_skills or []),
        location=model.location,
        priority=model.priority,
        is_active=model.is_active,
        created_at=model.created_at,
        updated_at=model.updated_at
    )


class SQLAlchemyWorkflowRuleRepository(IWorkflowRuleRepository):
    """
    SQLAlchemy implementation of the workflow rule repository.

    Rules are stored in the 'workflow_rules' table.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_active(self, entity_type: str, trigger: str) -> List[WorkflowRule]:
        stmt = (
            select(WorkflowRuleModel)
            .where(
                WorkflowRuleModel.entity_type == entity_type,
                WorkflowRuleModel.trigger == trigger,
                WorkflowRuleModel.is_active.is_(True)
            )
            .order_by(WorkflowRuleModel.created_at.asc(), WorkflowRuleModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_workflow_to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[WorkflowRule]:
        stmt = select(WorkflowRuleModel).order_by(
            WorkflowRuleModel.priority.desc(),
            WorkflowRuleModel.created_at.desc()
        )
        result = await self._session.execute(stmt)
        return [_workflow_to_domain(m) for m in result.scalars().all()]

    async def get(self, rule_id: str) -> Optional[WorkflowRule]:
        model = await self._get_model(rule_id)
        return _workflow_to_domain(model) if model else None

    async def create(self, rule: WorkflowRule) -> WorkflowRule:
        model = WorkflowRuleModel(
            id=_parse_uuid(rule.id) if rule.id else uuid4(),
            name=rule.name,
            description=rule.description,
            entity_type=rule.entity_type,
            trigger=rule.trigger,
            conditions=dump_conditions(rule.conditions),
            actions=dump_actions(rule.actions),
            priority=rule.priority,
            is_active=rule.is_active,
            created_by=rule.created_by,
            created_at=rule.created_at,
            updated_at=rule.updated_at
        )
        self._session.add(model)
        await self._session.flush()

        rule.id = str(model.id)
        return rule

    async def update(self, rule: WorkflowRule) -> WorkflowRule:
        model = await self._get_model(rule.id)
        if not model:
            raise RepositoryException(f"Workflow rule {rule.id} not found")

        model.name = rule.name
        model.description = rule.description
        model.entity_type = rule.entity_type
        model.trigger = rule.trigger
        model.conditions = dump_conditions(rule.conditions)
        model.actions = dump_actions(rule.actions)
        model.priority = rule.priority
        model.is_active = rule.is_active
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return _workflow_to_domain(model)

    async def delete(self, rule_id: str) -> bool:
        rule_uuid = _parse_uuid(rule_id)
        if rule_uuid is None:
            return False
        result = await self._session.execute(
            delete(WorkflowRuleModel).where(WorkflowRuleModel.id == rule_uuid)
        )
        return result.rowcount > 0

    async def _get_model(self, rule_id: str) -> Optional[WorkflowRuleModel]:
        rule_uuid = _parse_uuid(rule_id)
        if rule_uuid is None:
            return None
        return await self._session.get(WorkflowRuleModel, rule_uuid)


class SQLAlchemyAssignmentRuleRepository(IAssignmentRuleRepository):
    """SQLAlchemy implementation of the assignment rule repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_active(self) -> List[AssignmentRule]:
        stmt = (
            select(AssignmentRuleModel)
            .where(AssignmentRuleModel.is_active.is_(True))
            .order_by(AssignmentRuleModel.created_at.asc(), AssignmentRuleModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_assignment_to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[AssignmentRule]:
        stmt = select(AssignmentRuleModel).order_by(
            AssignmentRuleModel.priority.desc(),
            AssignmentRuleModel.created_at.desc()
        )
        result = await self._session.execute(stmt)
        return [_assignment_to_domain(m) for m in result.scalars().all()]

    async def get(self, rule_id: str) -> Optional[AssignmentRule]:
        model = await self._get_model(rule_id)
        return _assignment_to_domain(model) if model else None

    async def create(self, rule: AssignmentRule) -> AssignmentRule:
        model = AssignmentRuleModel(
            id=_parse_uuid(rule.id) if rule.id else uuid4(),
            name=rule.name,
            description=rule.description,
            assignment_type=rule.assignment_type,
            conditions=dump_conditions(rule.conditions),
            target_users=list(rule.target_users),
            required_skills=list(rule.required_skills),
            location=rule.location,
            priority=rule.priority,
            is_active=rule.is_active,
            rr_cursor=0,
            created_at=rule.created_at,
            updated_at=rule.updated_at
        )
        self._session.add(model)
        await self._session.flush()

        rule.id = str(model.id)
        return rule

    async def update(self, rule: AssignmentRule) -> AssignmentRule:
        model = await self._get_model(rule.id)
        if not model:
            raise RepositoryException(f"Assignment rule {rule.id} not found")

        if list(model.target_users or []) != list(rule.target_users):
            # A new rotation starts from the first target
            model.rr_cursor = 0

        model.name = rule.name
        model.description = rule.description
        model.assignment_type = rule.assignment_type
        model.conditions = dump_conditions(rule.conditions)
        model.target_users = list(rule.target_users)
        model.required_skills = list(rule.required_skills)
        model.location = rule.location
        model.priority = rule.priority
        model.is_active = rule.is_active
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return _assignment_to_domain(model)

    async def delete(self, rule_id: str) -> bool:
        rule_uuid = _parse_uuid(rule_id)
        if rule_uuid is None:
            return False
        result = await self._session.execute(
            delete(AssignmentRuleModel).where(AssignmentRuleModel.id == rule_uuid)
        )
        return result.rowcount > 0

    async def _get_model(self, rule_id: str) -> Optional[AssignmentRuleModel]:
        rule_uuid = _parse_uuid(rule_id)
        if rule_uuid is None:
            return None
        return await self._session.get(AssignmentRuleModel, rule_uuid)


class SQLAlchemyRoundRobinCursor(IRoundRobinCursor):
    """
    Round-robin cursor stored on the assignment rule row.

    Each advance runs in its own short transaction as a single
    ``UPDATE ... RETURNING``, so concurrent assignments across workers
    never observe the same position.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def advance(self, rule_id: str, size: int) -> int:
        if size <= 0:
            raise RepositoryException("Cannot rotate over an empty target list")

        rule_uuid = _parse_uuid(rule_id)
        if rule_uuid is None:
            raise RepositoryException(f"Invalid assignment rule id: {rule_id}")

        stmt = (
            update(AssignmentRuleModel)
            .where(AssignmentRuleModel.id == rule_uuid)
            .values(rr_cursor=(AssignmentRuleModel.rr_cursor + 1) % size)
            .returning(AssignmentRuleModel.rr_cursor)
        )

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    new_position = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to advance round-robin cursor: {e}") from e

        if new_position is None:
            raise RepositoryException(f"Assignment rule {rule_id} not found")

        return (new_position - 1) % size


class SQLAlchemyExecutionLogRepository(IExecutionLogRepository):
    """Execution history in the 'workflow_executions' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(self, execution: WorkflowExecution) -> WorkflowExecution:
        workflow_uuid = _parse_uuid(execution.workflow_id)
        if workflow_uuid is None:
            raise RepositoryException(f"Invalid workflow id: {execution.workflow_id}")

        model = WorkflowExecutionModel(
            id=uuid4(),
            workflow_id=workflow_uuid,
            entity_type=execution.entity_type,
            entity_id=execution.entity_id,
            trigger=execution.trigger,
            depth=execution.depth,
            status=execution.status,
            result=execution.result,
            error=execution.error,
            executed_at=execution.executed_at,
            completed_at=execution.completed_at
        )
        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to record workflow execution: {e}") from e

        execution.id = str(model.id)
        return execution

    async def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[WorkflowExecution]:
        stmt = select(WorkflowExecutionModel)

        if workflow_id:
            workflow_uuid = _parse_uuid(workflow_id)
            if workflow_uuid is None:
                return []
            stmt = stmt.where(WorkflowExecutionModel.workflow_id == workflow_uuid)
        if status:
            stmt = stmt.where(WorkflowExecutionModel.status == status)

        stmt = stmt.order_by(WorkflowExecutionModel.executed_at.desc()).limit(limit)
        result = await self._session.execute(stmt)

        return [
            WorkflowExecution(
                id=str(m.id),
                workflow_id=str(m.workflow_id),
                entity_type=m.entity_type,
                entity_id=m.entity_id,
                trigger=m.trigger,
                status=m.status,
                depth=m.depth,
                result=m.result or {},
                error=m.error,
                executed_at=m.executed_at,
                completed_at=m.completed_at
            )
            for m in result.scalars().all()
        ]
