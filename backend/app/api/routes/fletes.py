from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session, unit_of_work
from app.core.db_errors import raise_on_lock_conflict
from app.core.db_retry import with_db_retry
from app.core.deps import require_permission
from app.schemas.common import MessageOut
from app.schemas.flete import FleteUpsertPayload
from app.services import freight_builder
from app.services.auth_context import AuthContext

router = APIRouter(prefix="/fletes", tags=["fletes"])


@router.post(
    "/manual", response_model=MessageOut[Dict[str, Any]], status_code=status.HTTP_201_CREATED
)
async def crear_flete_manual(
    payload: FleteUpsertPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("fletes.crear")),
):
    async def _create_once() -> MessageOut:
        async with unit_of_work(session):
            data = await freight_builder.create_manual(session, payload, auth.id_usuario)
        return MessageOut(message="Flete creado", data=data)

    try:
        return await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.get("/{id_cabecera_flete}")
async def get_flete(
    id_cabecera_flete: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("dashboard.ver")),
) -> Dict[str, Any]:
    return {"data": await freight_builder.get_header(session, id_cabecera_flete)}


@router.put("/{id_cabecera_flete}", response_model=MessageOut[Dict[str, Any]])
async def update_flete(
    id_cabecera_flete: int,
    payload: FleteUpsertPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("fletes.editar")),
):
    async def _update_once() -> MessageOut:
        async with unit_of_work(session):
            data = await freight_builder.update_header(session, id_cabecera_flete, payload)
        return MessageOut(message="Flete actualizado", data=data)

    try:
        return await with_db_retry(session, _update_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
