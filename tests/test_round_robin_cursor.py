"""
Tests for the database-backed round-robin cursor on a file SQLite database.
"""

from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from deskflow.core import RepositoryException
from deskflow.infrastructure.database import Base
from deskflow.workflows.application import AssignmentStrategyResolver
from deskflow.workflows.domain import AssignmentRule
from deskflow.workflows.infrastructure.models import AssignmentRuleModel
from deskflow.workflows.infrastructure.repositories import (
    SQLAlchemyAssignmentRuleRepository,
    SQLAlchemyRoundRobinCursor,
)

from tests.conftest import technician

POOL = [technician("alice"), technician("bob"), technician("carol")]


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}"


def session_maker_for(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def rule(database_url):
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[AssignmentRuleModel.__table__])

    async with session_maker_for(engine)() as session:
        created = await SQLAlchemyAssignmentRuleRepository(session).create(
            AssignmentRule(
                id="", name="Rotation", assignment_type="round_robin",
                target_users=["alice", "bob", "carol"]
            )
        )
        await session.commit()

    await engine.dispose()
    return created


class TestSQLAlchemyRoundRobinCursor:

    @pytest.mark.asyncio
    async def test_rotation_survives_a_restart(self, database_url, rule):
        engine = create_async_engine(database_url)
        resolver = AssignmentStrategyResolver(SQLAlchemyRoundRobinCursor(session_maker_for(engine)))
        first_run = [await resolver.resolve(rule, {"id": f"T-{i}"}, POOL) for i in range(2)]
        await engine.dispose()

        # New engine and resolver on the same database file
        engine = create_async_engine(database_url)
        resolver = AssignmentStrategyResolver(SQLAlchemyRoundRobinCursor(session_maker_for(engine)))
        second_run = [await resolver.resolve(rule, {"id": f"T-{i}"}, POOL) for i in range(2)]

        async with session_maker_for(engine)() as session:
            stored = await session.get(AssignmentRuleModel, UUID(rule.id))
        await engine.dispose()

        assert first_run + second_run == ["alice", "bob", "carol", "alice"]
        assert stored.rr_cursor == 1

    @pytest.mark.asyncio
    async def test_advance_returns_pre_advance_position(self, database_url, rule):
        engine = create_async_engine(database_url)
        cursor = SQLAlchemyRoundRobinCursor(session_maker_for(engine))

        positions = [await cursor.advance(rule.id, 3) for _ in range(4)]
        await engine.dispose()

        assert positions == [0, 1, 2, 0]

    @pytest.mark.asyncio
    async def test_unknown_rule_is_an_error(self, database_url, rule):
        engine = create_async_engine(database_url)
        cursor = SQLAlchemyRoundRobinCursor(session_maker_for(engine))

        with pytest.raises(RepositoryException):
            await cursor.advance("00000000-0000-0000-0000-000000000000", 3)
        await engine.dispose()
