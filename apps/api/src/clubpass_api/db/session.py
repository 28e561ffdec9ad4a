"""Async engine and session factory wiring."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from clubpass_api.core.settings import settings


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """Have SQLite transactions start with an explicit BEGIN.

    pysqlite otherwise defers BEGIN, so releasing an outermost SAVEPOINT
    commits and a later rollback no longer undoes it.
    """

    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(settings.database_url, future=True, pool_pre_ping=True)
enable_sqlite_savepoints(engine)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""

    async with async_session() as session:
        yield session
