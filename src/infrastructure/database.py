"""
Async SQLAlchemy engine, session factory and unit-of-work helper.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  SQLite
(``aiosqlite``) is supported for local runs and tests; there every
transaction opens with ``BEGIN IMMEDIATE`` so that the conditional-write
protocol runs inside a serializable write scope.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import Settings
from src.domain.errors import UpstreamUnavailable


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def build_engine(settings: Settings) -> AsyncEngine:
    if settings.database_url.startswith("sqlite"):
        engine = create_async_engine(
            settings.database_url, echo=False, connect_args={"timeout": 30}
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    # Pool is sized for ~100 RPS of ride intake.
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_size=20,
        max_overflow=10,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    One all-or-nothing transaction: commit on success, rollback on error.

    Connectivity failures surface as ``UpstreamUnavailable``; domain errors
    raised inside the block propagate unchanged after the rollback.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except (OperationalError, InterfaceError) as exc:
        raise UpstreamUnavailable(f"Pool store unavailable: {exc.orig}") from exc
