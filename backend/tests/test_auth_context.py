import pytest

from app.core.cache import TTLCache
from app.models import CflPermiso, CflRol, CflRolPermiso, CflUsuario, CflUsuarioRol
from app.services.auth_context import hydrate_context, resolve_auth_context
from factories import NOW, seed_security


def test_hydrate_dedupes_roles_and_lowercases_permissions():
    ctx = hydrate_context(
        [("ADMIN", "Folios.Asignar"), ("admin", "dashboard.ver"), ("LECTOR", None)],
        "user_id",
        id_usuario=5,
    )
    assert ctx.role_names == ("ADMIN", "LECTOR")
    assert ctx.primary_role == "ADMIN"
    assert ctx.permissions == frozenset({"folios.asignar", "dashboard.ver"})
    assert ctx.has_permission(" FOLIOS.ASIGNAR ")
    assert not ctx.has_permission("")
    assert ctx.has_any_permission(["fletes.crear", "dashboard.ver"])
    assert ctx.caller == "user:5"


def test_hydrate_without_roles_is_none():
    assert hydrate_context([(None, "dashboard.ver")], "role_name") is None


@pytest.mark.anyio
async def test_user_id_wins_over_username_and_role(session):
    ids = await seed_security(session)
    ctx = await resolve_auth_context(
        session,
        TTLCache(ttl_seconds=30),
        {"x-cfl-user-id": str(ids["id_usuario"]), "x-cfl-role": "LECTOR"},
        {"username": "nobody"},
    )
    assert ctx.source == "user_id"
    assert ctx.primary_role == "ADMIN"
    assert ctx.id_usuario == ids["id_usuario"]
    assert ctx.has_permission("folios.asignar")


@pytest.mark.anyio
async def test_unknown_user_falls_through_to_role(session):
    await seed_security(session)
    ctx = await resolve_auth_context(
        session, TTLCache(ttl_seconds=30), {"x-user-id": "999"}, {"role": "lector"}
    )
    assert ctx.source == "role_name"
    assert ctx.primary_role == "LECTOR"
    assert ctx.caller == "role:LECTOR"
    assert ctx.has_permission("dashboard.ver")
    assert not ctx.has_permission("folios.asignar")


@pytest.mark.anyio
async def test_username_hint(session):
    await seed_security(session)
    ctx = await resolve_auth_context(session, TTLCache(ttl_seconds=30), {"x-username": "admin"}, {})
    assert ctx.source == "username"
    assert ctx.primary_role == "ADMIN"


@pytest.mark.anyio
async def test_inactive_role_and_permission_are_ignored(session):
    await seed_security(session)
    role = CflRol(nombre="AUDITOR", activo=False)
    permiso = CflPermiso(clave="reportes.ver", activo=False)
    session.add_all([role, permiso])
    await session.flush()
    session.add(CflRolPermiso(id_rol=role.id_rol, id_permiso=permiso.id_permiso))
    await session.commit()

    cache = TTLCache(ttl_seconds=30)
    assert await resolve_auth_context(session, cache, {"x-cfl-role": "AUDITOR"}, {}) is None


@pytest.mark.anyio
async def test_inactive_user_is_not_resolved(session):
    ids = await seed_security(session)
    user = CflUsuario(username="baja", activo=False, created_at=NOW)
    session.add(user)
    await session.flush()
    session.add(CflUsuarioRol(id_usuario=user.id_usuario, id_rol=ids["id_rol_admin"]))
    await session.commit()

    cache = TTLCache(ttl_seconds=30)
    assert await resolve_auth_context(session, cache, {"x-cfl-username": "baja"}, {}) is None


@pytest.mark.anyio
async def test_no_hints_resolves_nothing(session):
    assert await resolve_auth_context(session, TTLCache(ttl_seconds=30), {}, {}) is None


@pytest.mark.anyio
async def test_resolved_context_is_cached(session):
    ids = await seed_security(session)
    cache = TTLCache(ttl_seconds=30)
    first = await resolve_auth_context(session, cache, {"x-cfl-user-id": str(ids["id_usuario"])}, {})

    # Revoking the role is invisible until the cached entry expires.
    user_role = await session.get(CflUsuarioRol, (ids["id_usuario"], ids["id_rol_admin"]))
    await session.delete(user_role)
    await session.commit()

    second = await resolve_auth_context(session, cache, {"x-cfl-user-id": str(ids["id_usuario"])}, {})
    assert second is first
    cache.invalidate()
    assert await resolve_auth_context(session, cache, {"x-cfl-user-id": str(ids["id_usuario"])}, {}) is None
