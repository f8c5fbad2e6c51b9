"""
Database Infrastructure
=======================

Engine and session lifecycle for the automation store.

One async engine serves three kinds of work:

- request sessions (``get_session``), committed when the request's
  automation run returns and rolled back if it raises;
- background sessions (``get_session_context``) for the SLA sweep and
  maintenance scripts;
- short independent transactions opened straight from the session factory
  (``get_session_maker``), used by the round-robin cursor so an advance is
  committed even if the surrounding request later rolls back.
"""

import importlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from deskflow.config import settings

# Modules whose models must be on Base.metadata before create_all
MODEL_MODULES = (
    "deskflow.helpdesk.infrastructure.models",
    "deskflow.workflows.infrastructure.models",
    "deskflow.sla.infrastructure.models",
)

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by helpdesk, workflow and SLA tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_maker


def init_database() -> AsyncEngine:
    """
    Create the engine and session factory from settings.

    Called once from the application lifespan (or a script's main).
    """
    global _engine, _session_maker

    # asyncpg takes ssl=, not libpq's sslmode=
    database_url = settings.database_url.replace("sslmode=", "ssl=")

    engine_kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow

    _engine = create_async_engine(database_url, **engine_kwargs)
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_database() -> None:
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def _transaction() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one transaction per request."""
    async with _transaction() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for work outside a request.

    Usage:
        async with get_session_context() as session:
            tracker = build_container(session).sla_tracker
            await tracker.sweep()
    """
    async with _transaction() as session:
        yield session


async def create_tables() -> None:
    """Create any missing tables; existing tables are left as they are."""
    for module in MODEL_MODULES:
        importlib.import_module(module)

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
