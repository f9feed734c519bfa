"""Async database session management and unit-of-work helpers."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.exc import ResourceClosedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    isolation_level=settings.DB_ISOLATION_LEVEL,
)

SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""

    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def repeatable_read_transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run the enclosed block in a single MySQL transaction at REPEATABLE READ.

    The session-level lock wait and statement timeouts are tightened for the
    duration of the block and restored afterwards, so folio bucket locks never
    hold a pooled connection for longer than ``INNODB_LOCK_WAIT_TIMEOUT_SEC``.
    """

    # ``session.connection()`` is a coroutine, not an async context manager.
    conn = await session.connection()
    try:
        prev_lock_wait = (
            await conn.exec_driver_sql("SELECT @@SESSION.innodb_lock_wait_timeout")
        ).scalar_one()
        prev_max_exec = (
            await conn.exec_driver_sql("SELECT @@SESSION.max_execution_time")
        ).scalar_one()

        await conn.exec_driver_sql(
            "SET SESSION TRANSACTION ISOLATION LEVEL REPEATABLE READ"
        )
        await conn.exec_driver_sql(
            f"SET SESSION innodb_lock_wait_timeout = {settings.INNODB_LOCK_WAIT_TIMEOUT_SEC}"
        )
        await conn.exec_driver_sql(
            f"SET SESSION MAX_EXECUTION_TIME = {settings.SELECT_MAX_EXECUTION_TIME_MS}"
        )

        if session.in_transaction():
            await session.rollback()

        try:
            async with session.begin():
                yield session
        finally:
            try:
                await conn.exec_driver_sql(
                    f"SET SESSION TRANSACTION ISOLATION LEVEL {settings.DB_ISOLATION_LEVEL}"
                )
                await conn.exec_driver_sql(
                    f"SET SESSION innodb_lock_wait_timeout = {int(prev_lock_wait)}"
                )
                await conn.exec_driver_sql(
                    f"SET SESSION MAX_EXECUTION_TIME = {int(prev_max_exec)}"
                )
            except ResourceClosedError:
                # Connection already released after rollback; overrides died with it.
                pass
    finally:
        await conn.close()


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind
    return bind.dialect.name if bind is not None else ""


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Open one transaction for a state-changing operation.

    Commits when the block exits normally and rolls back on any exception,
    including ``HTTPException`` raised by validation inside the block.
    """

    if _dialect_name(session) == "mysql":
        async with repeatable_read_transaction(session):
            yield session
        return

    if session.in_transaction():
        await session.rollback()
    async with session.begin():
        yield session
