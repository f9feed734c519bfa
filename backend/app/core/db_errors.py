"""Shared helpers for database error handling."""

from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

MYSQL_DUPLICATE_KEY_CODES = {1062, 1586}
MYSQL_FOREIGN_KEY_CODES = {1451, 1452}

UNIQUE_VIOLATION_MESSAGE = "Violacion de unicidad al guardar registro"
REFERENTIAL_VIOLATION_MESSAGE = "No se puede eliminar o actualizar por integridad referencial"


def _error_code(exc: DBAPIError) -> int | None:
    orig = getattr(exc, "orig", None)
    if orig and getattr(orig, "args", None):
        try:
            return int(orig.args[0])
        except (TypeError, ValueError):
            return None
    return None


def is_unique_violation(exc: DBAPIError) -> bool:
    code = _error_code(exc)
    if code in MYSQL_DUPLICATE_KEY_CODES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "duplicate entry" in message or "unique constraint" in message


def is_foreign_key_violation(exc: DBAPIError) -> bool:
    code = _error_code(exc)
    if code in MYSQL_FOREIGN_KEY_CODES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "foreign key constraint" in message


def integrity_error_to_http(exc: IntegrityError) -> HTTPException | None:
    """Map a constraint violation to the 409 the API reports, if it is one we know."""

    if is_unique_violation(exc):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=UNIQUE_VIOLATION_MESSAGE
        )
    if is_foreign_key_violation(exc):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=REFERENTIAL_VIOLATION_MESSAGE
        )
    return None


def raise_on_lock_conflict(exc: OperationalError) -> None:
    """Translate lock-nowait conflicts into user-friendly HTTP errors."""

    code = _error_code(exc)
    message = str(getattr(exc, "orig", exc)).lower()
    if code in {3572} or "could not obtain lock" in message or "could not acquire" in message:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Registro bloqueado por otra operacion. Reintente en unos segundos.",
        ) from exc
    raise exc
