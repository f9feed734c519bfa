from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_session, unit_of_work
from app.core.db_errors import raise_on_lock_conflict
from app.core.db_retry import with_db_retry
from app.core.deps import require_permission
from app.core.rate_limit import limiter
from app.schemas.common import MessageOut, PageOut, Pagination, clamp_page
from app.schemas.flete import FleteUpsertPayload
from app.schemas.folio import AsignarFolioPayload, AsignarNuevoFolioPayload
from app.services import folio_allocator, freight_builder, reconciliation
from app.services.auth_context import AuthContext

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/resumen")
async def dashboard_resumen(
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("dashboard.ver")),
) -> Dict[str, Any]:
    return {"data": await reconciliation.dashboard_summary(session)}


@router.get("/fletes/no-ingresados", response_model=PageOut[Dict[str, Any]])
async def list_no_ingresados(
    search: Optional[str] = None,
    source_system: Optional[str] = None,
    fecha_desde: Optional[date] = None,
    fecha_hasta: Optional[date] = None,
    estado: Optional[str] = None,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("dashboard.ver")),
):
    page_no, size = clamp_page(page, page_size)
    filters = reconciliation.CandidateFilters(
        search=search,
        source_system=source_system,
        fecha_desde=fecha_desde,
        fecha_hasta=fecha_hasta,
        estado=estado,
    )
    rows, total = await reconciliation.list_missing_deliveries(session, filters, page_no, size)
    return PageOut(data=rows, pagination=Pagination.build(page_no, size, total))


@router.get("/fletes/no-ingresados/{id_sap_entrega}/detalle")
async def detalle_no_ingresado(
    id_sap_entrega: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("dashboard.ver")),
) -> Dict[str, Any]:
    return {"data": await reconciliation.get_delivery_detail(session, id_sap_entrega)}


@router.post(
    "/fletes/no-ingresados/{id_sap_entrega}/crear",
    response_model=MessageOut[Dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
async def crear_desde_candidato(
    id_sap_entrega: int,
    payload: FleteUpsertPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("fletes.crear")),
):
    async def _create_once() -> MessageOut:
        async with unit_of_work(session):
            data = await freight_builder.create_from_candidate(
                session, id_sap_entrega, payload, auth.id_usuario
            )
        return MessageOut(message="Flete creado desde entrega SAP", data=data)

    try:
        return await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.post(
    "/fletes/no-ingresados/{id_sap_entrega}/ingresar",
    response_model=MessageOut[Dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.FOLIO_MUTATION_RATE)
async def ingresar_candidato(
    request: Request,
    id_sap_entrega: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("fletes.crear")),
):
    async def _ingest_once() -> MessageOut:
        async with unit_of_work(session):
            data = await freight_builder.ingest_candidate(
                session, id_sap_entrega, auth.id_usuario
            )
        return MessageOut(message="Entrega SAP ingresada", data=data)

    try:
        return await with_db_retry(session, _ingest_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.get("/fletes/completos-sin-folio", response_model=PageOut[Dict[str, Any]])
async def list_completos_sin_folio(
    estado: Optional[str] = None,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("dashboard.ver")),
):
    page_no, size = clamp_page(page, page_size)
    rows, total = await reconciliation.list_complete_without_folio(session, estado, page_no, size)
    return PageOut(data=rows, pagination=Pagination.build(page_no, size, total))


@router.post("/fletes/{id_cabecera_flete}/anular", response_model=MessageOut[Dict[str, Any]])
async def anular_flete(
    id_cabecera_flete: int,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("fletes.anular")),
):
    async def _void_once() -> MessageOut:
        async with unit_of_work(session):
            data = await folio_allocator.void_header(session, id_cabecera_flete)
        return MessageOut(message="Flete anulado", data=data)

    try:
        return await with_db_retry(session, _void_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.post("/folios/asignar", response_model=MessageOut[Dict[str, Any]])
@limiter.limit(settings.FOLIO_MUTATION_RATE)
async def asignar_folio(
    request: Request,
    payload: AsignarFolioPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("folios.asignar")),
):
    async def _assign_once() -> MessageOut:
        async with unit_of_work(session):
            data = await folio_allocator.assign_existing_folio(
                session, payload.id_folio, payload.ids_cabecera_flete
            )
        return MessageOut(message="Folio asignado", data=data)

    try:
        return await with_db_retry(session, _assign_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)


@router.post(
    "/folios/asignar-nuevo",
    response_model=MessageOut[Dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.FOLIO_MUTATION_RATE)
async def asignar_folio_nuevo(
    request: Request,
    payload: AsignarNuevoFolioPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_permission("folios.asignar")),
):
    async def _create_once() -> MessageOut:
        async with unit_of_work(session):
            data = await folio_allocator.create_folio_for_headers(
                session, payload.ids_cabecera_flete
            )
        return MessageOut(message="Folio creado y asignado", data=data)

    try:
        return await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)
