"""Retry wrapper for units of work that hit deadlocks or lock-wait timeouts."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings

T = TypeVar("T")

# 1205 lock wait timeout, 1213 deadlock, 3572 NOWAIT lock conflict.
MYSQL_RETRIABLE_ERROR_CODES = {1205, 1213, 3572}
MYSQL_RETRIABLE_SQLSTATES = {"40001"}
LOCK_NOWAIT_CODE = 3572


def _extract_error_code(exc: DBAPIError) -> tuple[int | None, str | None]:
    orig = getattr(exc, "orig", None)
    if not orig:
        return None, None
    code = None
    sqlstate = getattr(orig, "sqlstate", None)
    if getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    return code, sqlstate


def is_retriable(exc: DBAPIError) -> bool:
    code, sqlstate = _extract_error_code(exc)
    if code == LOCK_NOWAIT_CODE and settings.DB_NOWAIT_LOCKS:
        # The caller asked to fail fast; surface the conflict as 409 instead.
        return False
    if code in MYSQL_RETRIABLE_ERROR_CODES or sqlstate in MYSQL_RETRIABLE_SQLSTATES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "deadlock" in message or "lock wait timeout" in message


async def with_db_retry(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    jitter: float | None = None,
    operation_name: str | None = None,
) -> T:
    """Run ``operation`` and rerun it from scratch on transient lock failures.

    ``operation`` must open its own unit of work so that every attempt starts
    from a clean transaction. Non-transient errors propagate untouched.
    """

    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    base_delay = base_delay if base_delay is not None else settings.DB_RETRY_BASE_DELAY
    jitter = jitter if jitter is not None else settings.DB_RETRY_JITTER
    name = operation_name or getattr(operation, "__name__", "operation")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except DBAPIError as exc:
            if not is_retriable(exc) or attempt == attempts:
                raise
            await session.rollback()
            sleep_for = base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)
            logger.bind(
                operation=name,
                attempt=attempt,
                max_attempts=attempts,
                sleep=sleep_for,
                error=str(exc),
            ).warning("db_retry_deadlock")
            await asyncio.sleep(sleep_for)
    raise RuntimeError("with_db_retry called with attempts < 1")
