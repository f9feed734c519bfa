from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_session, unit_of_work
from app.core.db_errors import raise_on_lock_conflict
from app.core.db_retry import with_db_retry
from app.core.deps import require_permission
from app.core.rate_limit import limiter
from app.schemas.common import MessageOut, PageOut, Pagination, clamp_page
from app.schemas.folio import MovimientoSapPayload
from app.services import folio_allocator, maintainers
from app.services.auth_context import AuthContext

router = APIRouter(prefix="/mantenedores", tags=["mantenedores"])


@router.get("/resumen")
async def mantenedores_resumen(
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.ver")),
) -> Dict[str, Any]:
    return {"data": await maintainers.summary(session)}


# Folio movement routes are declared before the generic /{entity}/{id} ones.
@router.get("/folios/{id_folio}/movimientos")
async def folio_movimientos(
    id_folio: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.ver")),
) -> Dict[str, Any]:
    return {"data": await folio_allocator.list_folio_movements(session, id_folio)}


@router.post("/folios/{id_folio}/asignar-sap", response_model=MessageOut[Dict[str, Any]])
@limiter.limit(settings.FOLIO_MUTATION_RATE)
async def folio_asignar_sap(
    request: Request,
    id_folio: int,
    payload: MovimientoSapPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("folios.asignar")),
):
    async def _assign_once() -> MessageOut:
        async with unit_of_work(session):
            data = await folio_allocator.assign_by_delivery_number(
                session, id_folio, payload.sap_numero_entrega, payload.source_system
            )
        return MessageOut(message="Movimiento asignado al folio", data=data)

    try:
        return await with_db_retry(session, _assign_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.patch("/folios/{id_folio}/desasignar", response_model=MessageOut[Dict[str, Any]])
@limiter.limit(settings.FOLIO_MUTATION_RATE)
async def folio_desasignar(
    request: Request,
    id_folio: int,
    payload: MovimientoSapPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("folios.asignar")),
):
    async def _unassign_once() -> MessageOut:
        async with unit_of_work(session):
            data = await folio_allocator.unassign_by_delivery_number(
                session, id_folio, payload.sap_numero_entrega, payload.source_system
            )
        return MessageOut(message="Movimiento liberado del folio", data=data)

    try:
        return await with_db_retry(session, _unassign_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.get("/{entity}", response_model=PageOut[Dict[str, Any]])
async def list_entity(
    entity: str,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.ver")),
):
    page_no, size = clamp_page(page, page_size)
    rows, total = await maintainers.list_rows(session, entity, page_no, size)
    return PageOut(data=rows, pagination=Pagination.build(page_no, size, total))


@router.get("/{entity}/{row_id}")
async def get_entity(
    entity: str,
    row_id: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.ver")),
) -> Dict[str, Any]:
    return {"data": await maintainers.get_row(session, entity, row_id)}


@router.post(
    "/{entity}", response_model=MessageOut[Dict[str, Any]], status_code=status.HTTP_201_CREATED
)
async def create_entity(
    entity: str,
    body: Dict[str, Any] = Body(default_factory=dict),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.editar")),
):
    config = maintainers.get_config(entity)

    async def _create_once() -> MessageOut:
        async with unit_of_work(session):
            row_id = await maintainers.create_row(session, entity, body)
        row = await maintainers.get_row(session, entity, row_id)
        return MessageOut(message=f"{config.title} creado", data=row)

    try:
        return await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.put("/{entity}/{row_id}", response_model=MessageOut[Dict[str, Any]])
async def update_entity(
    entity: str,
    row_id: int,
    body: Dict[str, Any] = Body(default_factory=dict),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.editar")),
):
    config = maintainers.get_config(entity)

    async def _update_once() -> MessageOut:
        async with unit_of_work(session):
            await maintainers.update_row(session, entity, row_id, body)
        row = await maintainers.get_row(session, entity, row_id)
        return MessageOut(message=f"{config.title} actualizado", data=row)

    try:
        return await with_db_retry(session, _update_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.delete("/{entity}/{row_id}", response_model=MessageOut[Dict[str, Any]])
async def delete_entity(
    entity: str,
    row_id: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("mantenedores.editar")),
):
    config = maintainers.get_config(entity)

    async def _delete_once() -> MessageOut:
        async with unit_of_work(session):
            await maintainers.delete_row(session, entity, row_id)
        return MessageOut(message=f"{config.title} eliminado", data={"id": row_id})

    try:
        return await with_db_retry(session, _delete_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
