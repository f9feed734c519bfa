from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import TTLCache
from app.core.db import get_session
from app.core.logging import caller_ctx_var
from app.services.auth_context import AuthContext, resolve_auth_context


def get_auth_cache(request: Request) -> TTLCache[AuthContext]:
    return request.app.state.auth_cache


async def get_auth_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
    cache: TTLCache[AuthContext] = Depends(get_auth_cache),
) -> AuthContext:
    context = await resolve_auth_context(
        session, cache, request.headers, request.query_params
    )
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "No se pudo resolver el contexto de autorizacion", "role": None},
        )
    request.state.auth = context
    caller_ctx_var.set(context.caller)
    return context


def require_permission(permission_key: str):
    """Dependency factory: 403 unless the caller holds ``permission_key``."""

    async def _check(
        request: Request,
        session: AsyncSession = Depends(get_session),
        cache: TTLCache[AuthContext] = Depends(get_auth_cache),
    ) -> AuthContext:
        context = await resolve_auth_context(
            session, cache, request.headers, request.query_params
        )
        role = context.primary_role if context else None
        if context is None or not context.has_permission(permission_key):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": f"No tiene permiso para {permission_key}", "role": role},
            )
        request.state.auth = context
        caller_ctx_var.set(context.caller)
        return context

    return _check
