"""Resolve the caller's roles and permission keys from request hints.

A caller is identified by user id, then username, then bare role name; the
first hint that resolves to an active user (with at least one active role) or
an active role wins. Permission keys are compared case-insensitively.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import TTLCache
from app.models.cfl_security import CflPermiso, CflRol, CflRolPermiso, CflUsuario, CflUsuarioRol

USER_ID_HINTS = ("x-cfl-user-id", "x-user-id")
USERNAME_HINTS = ("x-cfl-username", "x-username")
ROLE_HINTS = ("x-cfl-role", "x-user-role")


@dataclass(frozen=True)
class AuthContext:
    source: str
    role_names: Tuple[str, ...]
    primary_role: Optional[str]
    permissions: frozenset
    id_usuario: Optional[int] = None

    def has_permission(self, key: str) -> bool:
        return bool(key) and key.strip().lower() in self.permissions

    def has_any_permission(self, keys: Iterable[str]) -> bool:
        return any(self.has_permission(key) for key in keys)

    @property
    def caller(self) -> str:
        if self.id_usuario is not None:
            return f"user:{self.id_usuario}"
        return f"role:{self.primary_role}"


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _hint(
    headers: Mapping[str, str], query: Mapping[str, str], names: Sequence[str], param: str
) -> Optional[str]:
    for name in names:
        value = _text(headers.get(name))
        if value:
            return value
    return _text(query.get(param))


def _parse_user_id(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def hydrate_context(
    rows: Iterable[Tuple[Optional[str], Optional[str]]],
    source: str,
    id_usuario: Optional[int] = None,
) -> Optional[AuthContext]:
    """Fold (role name, permission key) rows into an ``AuthContext``; ``None`` when empty."""

    role_names: List[str] = []
    seen: set[str] = set()
    permissions: set[str] = set()
    for role_name, permission_key in rows:
        role = _text(role_name)
        if role and role.lower() not in seen:
            seen.add(role.lower())
            role_names.append(role)
        key = _text(permission_key)
        if key:
            permissions.add(key.lower())
    if not role_names:
        return None
    return AuthContext(
        source=source,
        role_names=tuple(role_names),
        primary_role=role_names[0],
        permissions=frozenset(permissions),
        id_usuario=id_usuario,
    )


def _permission_join(stmt):
    return stmt.outerjoin(CflRolPermiso, CflRolPermiso.id_rol == CflRol.id_rol).outerjoin(
        CflPermiso,
        and_(CflPermiso.id_permiso == CflRolPermiso.id_permiso, CflPermiso.activo.is_(True)),
    )


async def _fetch_for_user(session: AsyncSession, condition, source: str) -> Optional[AuthContext]:
    stmt = _permission_join(
        select(CflUsuario.id_usuario, CflRol.nombre, CflPermiso.clave)
        .select_from(CflUsuario)
        .join(CflUsuarioRol, CflUsuarioRol.id_usuario == CflUsuario.id_usuario)
        .join(CflRol, and_(CflRol.id_rol == CflUsuarioRol.id_rol, CflRol.activo.is_(True)))
    ).where(CflUsuario.activo.is_(True), condition).order_by(CflRol.nombre.asc())
    rows = (await session.execute(stmt)).all()
    if not rows:
        return None
    return hydrate_context(((nombre, clave) for _, nombre, clave in rows), source, rows[0][0])


async def fetch_by_user_id(session: AsyncSession, user_id: int) -> Optional[AuthContext]:
    return await _fetch_for_user(session, CflUsuario.id_usuario == user_id, "user_id")


async def fetch_by_username(session: AsyncSession, username: str) -> Optional[AuthContext]:
    return await _fetch_for_user(session, CflUsuario.username == username, "username")


async def fetch_by_role_name(session: AsyncSession, role_name: str) -> Optional[AuthContext]:
    stmt = _permission_join(
        select(CflRol.nombre, CflPermiso.clave).select_from(CflRol)
    ).where(CflRol.activo.is_(True), func.lower(CflRol.nombre) == role_name.lower())
    rows = (await session.execute(stmt)).all()
    return hydrate_context(rows, "role_name")


async def resolve_auth_context(
    session: AsyncSession,
    cache: TTLCache[AuthContext],
    headers: Mapping[str, str],
    query: Mapping[str, str],
) -> Optional[AuthContext]:
    """Try user id, then username, then role name; the first hit wins."""

    attempts = []
    user_id = _parse_user_id(_hint(headers, query, USER_ID_HINTS, "user_id"))
    if user_id is not None:
        attempts.append(("user_id", user_id, fetch_by_user_id))
    username = _hint(headers, query, USERNAME_HINTS, "username")
    if username:
        attempts.append(("username", username, fetch_by_username))
    role_name = _hint(headers, query, ROLE_HINTS, "role")
    if role_name:
        attempts.append(("role", role_name, fetch_by_role_name))

    for kind, value, fetch in attempts:
        context = await cache.get_or_load(
            f"{kind}:{str(value).lower()}",
            lambda fetch=fetch, value=value: fetch(session, value),
        )
        if context is not None:
            logger.bind(source=context.source, role=context.primary_role).debug(
                "auth_context_resolved"
            )
            return context
    return None
