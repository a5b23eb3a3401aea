"""
Async engine and session factories.

Two session factories share one connection pool:
  - `sessions` for ordinary reads/writes (READ COMMITTED on PostgreSQL)
  - `serializable_sessions` for the guarded registration transaction

SQLite is supported for local development and tests. Its driver defers BEGIN
until the first write, which would let two transactions read the same seat
count; we take over transaction control and emit BEGIN IMMEDIATE so every
SQLite transaction holds the write lock from its first statement, which makes
it serializable.
"""

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from minicompete.core.config import Settings


@dataclass
class Database:
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]
    serializable_sessions: async_sessionmaker[AsyncSession]

    async def dispose(self) -> None:
        await self.engine.dispose()


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database(settings: Settings, url: str | None = None) -> Database:
    url = url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False)
        _use_immediate_transactions(engine)
        # BEGIN IMMEDIATE already serializes; the dialect's isolation setting
        # would hand transaction control back to the driver
        serializable_engine = engine
    else:
        engine = create_async_engine(
            url,
            echo=False,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
        serializable_engine = engine.execution_options(isolation_level="SERIALIZABLE")

    return Database(
        engine=engine,
        sessions=async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        serializable_sessions=async_sessionmaker(
            serializable_engine, class_=AsyncSession, expire_on_commit=False
        ),
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    database: Database = request.app.state.container.database
    async with database.sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
