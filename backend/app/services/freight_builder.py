"""Freight header creation and full replacement.

Header, lines and (for SAP candidates) the delivery link are written in the
caller's unit of work; a failure anywhere rolls all of them back together.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.models.cfl_flete import CflCabeceraFlete, CflDetalleFlete, CflFleteSapEntrega
from app.models.cfl_folio import CflFolio
from app.models.cfl_sap import CflSapEntrega, CflSapLikpCurrent
from app.models.cfl_transport import CflMovil
from app.schemas.flete import FleteCabeceraPayload, FleteDetallePayload, FleteUpsertPayload
from app.services import folio_allocator, reconciliation
from app.services.lifecycle import (
    TERMINAL_STATUSES,
    FreightStatus,
    LifecycleInputs,
    derive_lifecycle_status,
    has_real_folio,
    normalize_status,
)

DELIVERY_ALREADY_LINKED = "La entrega SAP ya esta asociada a un flete"
FOLIO_OTHER_COST_CENTER = "El folio pertenece a otro centro de costo"
RELATION_PRINCIPAL = "PRINCIPAL"
TWO_PLACES = Decimal("0.01")


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


async def resolve_vehicle_assignment(
    session: AsyncSession, cabecera: FleteCabeceraPayload
) -> Optional[int]:
    """Pick the movil for a header, registering a new carrier/driver/truck tuple if needed."""

    if cabecera.id_movil is not None:
        return cabecera.id_movil
    if None in (cabecera.id_empresa_transporte, cabecera.id_chofer, cabecera.id_camion):
        return None

    existing = await session.scalar(
        select(CflMovil)
        .where(
            CflMovil.id_empresa_transporte == cabecera.id_empresa_transporte,
            CflMovil.id_chofer == cabecera.id_chofer,
            CflMovil.id_camion == cabecera.id_camion,
        )
        .order_by(CflMovil.activo.desc(), CflMovil.id_movil.asc())
        .limit(1)
    )
    if existing is not None:
        return existing.id_movil

    movil = CflMovil(
        id_empresa_transporte=cabecera.id_empresa_transporte,
        id_chofer=cabecera.id_chofer,
        id_camion=cabecera.id_camion,
        activo=True,
        created_at=_now(),
    )
    session.add(movil)
    await session.flush()
    logger.bind(
        id_movil=movil.id_movil,
        id_empresa_transporte=movil.id_empresa_transporte,
        id_chofer=movil.id_chofer,
        id_camion=movil.id_camion,
    ).info("movil_created")
    return movil.id_movil


async def resolve_folio_number(session: AsyncSession, id_folio: Optional[int]) -> Optional[str]:
    """Number of the referenced folio; ``None`` when no folio is referenced."""

    if id_folio is None:
        return None
    numero = await session.scalar(
        select(CflFolio.folio_numero).where(CflFolio.id_folio == id_folio)
    )
    if numero is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folio no encontrado")
    return numero


async def bind_folio(session: AsyncSession, cabecera: FleteCabeceraPayload) -> Optional[str]:
    """Lock the folio a new header points at and return its number.

    Real folios must be open and unlocked; any folio must belong to the
    header's cost center.
    """

    if cabecera.id_folio is None:
        return None
    folio = await folio_allocator.lock_folio(session, cabecera.id_folio)
    if has_real_folio(folio.folio_numero):
        folio_allocator.ensure_folio_open(folio)
    if folio.id_centro_costo != cabecera.id_centro_costo_final:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=FOLIO_OTHER_COST_CENTER,
        )
    return folio.folio_numero


def build_lines(detalles: List[FleteDetallePayload]) -> List[CflDetalleFlete]:
    now = _now()
    return [
        CflDetalleFlete(
            id_especie=item.id_especie,
            material=item.material,
            descripcion=item.descripcion,
            cantidad=item.cantidad,
            unidad=item.unidad,
            peso=item.peso,
            created_at=now,
        )
        for item in detalles
    ]


def _derive_status(
    cabecera: FleteCabeceraPayload,
    folio_number: Optional[str],
    id_movil: Optional[int],
    line_count: int,
) -> FreightStatus:
    return derive_lifecycle_status(
        LifecycleInputs(
            requested_status=cabecera.estado,
            folio_number=folio_number,
            id_tipo_flete=cabecera.id_tipo_flete,
            id_centro_costo=cabecera.id_centro_costo_final,
            id_detalle_viaje=cabecera.id_detalle_viaje,
            id_movil=id_movil,
            id_tarifa=cabecera.id_tarifa,
            line_count=line_count,
        )
    )


def _apply_header_fields(
    header: CflCabeceraFlete,
    cabecera: FleteCabeceraPayload,
    id_movil: Optional[int],
    estado: FreightStatus,
) -> None:
    header.id_tipo_flete = cabecera.id_tipo_flete
    header.id_centro_costo_final = cabecera.id_centro_costo_final
    header.id_detalle_viaje = cabecera.id_detalle_viaje
    header.id_movil = id_movil
    header.id_tarifa = cabecera.id_tarifa
    header.tipo_movimiento = cabecera.tipo_movimiento
    header.estado = estado.value
    header.fecha_salida = cabecera.fecha_salida
    header.hora_salida = cabecera.hora_salida
    header.monto_aplicado = cabecera.monto_aplicado
    header.cuenta_mayor_final = cabecera.cuenta_mayor_final
    header.sap_numero_entrega_sugerido = cabecera.sap_numero_entrega_sugerido
    header.sap_codigo_tipo_flete_sugerido = cabecera.sap_codigo_tipo_flete_sugerido
    header.sap_centro_costo_sugerido = cabecera.sap_centro_costo_sugerido
    header.sap_cuenta_mayor_sugerida = cabecera.sap_cuenta_mayor_sugerida
    header.observaciones = cabecera.observaciones


async def _insert_header(
    session: AsyncSession,
    payload: FleteUpsertPayload,
    user_id: Optional[int],
) -> CflCabeceraFlete:
    cabecera = payload.cabecera
    id_movil = await resolve_vehicle_assignment(session, cabecera)
    folio_number = await bind_folio(session, cabecera)
    estado = _derive_status(cabecera, folio_number, id_movil, len(payload.detalles))

    now = _now()
    header = CflCabeceraFlete(
        id_folio=cabecera.id_folio,
        id_usuario_creador=user_id,
        created_at=now,
        updated_at=now,
    )
    _apply_header_fields(header, cabecera, id_movil, estado)
    header.detalles = build_lines(payload.detalles)
    session.add(header)
    await session.flush()
    return header


async def _ensure_delivery_unlinked(session: AsyncSession, id_sap_entrega: int) -> None:
    linked = await session.scalar(
        select(CflFleteSapEntrega.id_cabecera_flete)
        .where(CflFleteSapEntrega.id_sap_entrega == id_sap_entrega)
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    )
    if linked is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DELIVERY_ALREADY_LINKED)


async def _link_delivery(
    session: AsyncSession, header: CflCabeceraFlete, entrega: CflSapEntrega
) -> None:
    link = CflFleteSapEntrega(
        id_cabecera_flete=header.id_cabecera_flete,
        id_sap_entrega=entrega.id_sap_entrega,
        origen_datos=(entrega.source_system or "SAP")[:10],
        tipo_relacion=RELATION_PRINCIPAL,
        created_at=_now(),
    )
    session.add(link)
    try:
        await session.flush()
    except IntegrityError as exc:
        # A concurrent request linked the same delivery first.
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=DELIVERY_ALREADY_LINKED
        ) from exc


def _fill_sap_suggestions(
    cabecera: FleteCabeceraPayload,
    entrega: CflSapEntrega,
    likp: Optional[CflSapLikpCurrent],
) -> FleteCabeceraPayload:
    clean = reconciliation.clean_text
    updates: Dict[str, Any] = {}
    if cabecera.sap_numero_entrega_sugerido is None:
        updates["sap_numero_entrega_sugerido"] = entrega.sap_numero_entrega
    if likp is not None:
        suggestions = {
            "sap_codigo_tipo_flete_sugerido": clean(likp.sap_codigo_tipo_flete),
            "sap_centro_costo_sugerido": clean(likp.sap_centro_costo),
            "sap_cuenta_mayor_sugerida": clean(likp.sap_cuenta_mayor),
        }
        for field, value in suggestions.items():
            if getattr(cabecera, field) is None and value is not None:
                updates[field] = value
        if cabecera.cuenta_mayor_final is None and clean(likp.sap_cuenta_mayor):
            updates["cuenta_mayor_final"] = clean(likp.sap_cuenta_mayor)
    return cabecera.model_copy(update=updates) if updates else cabecera


def _created(header: CflCabeceraFlete, **extra: Any) -> Dict[str, Any]:
    data = {
        "id_cabecera_flete": header.id_cabecera_flete,
        "estado": header.estado,
        "id_movil": header.id_movil,
        "detalles": len(header.detalles),
    }
    data.update(extra)
    return data


async def create_from_candidate(
    session: AsyncSession,
    id_sap_entrega: int,
    payload: FleteUpsertPayload,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a header (plus lines) for an unlinked SAP delivery and link them."""

    entrega, likp = await reconciliation.load_delivery(session, id_sap_entrega, for_update=True)
    await _ensure_delivery_unlinked(session, id_sap_entrega)

    payload = payload.model_copy(
        update={"cabecera": _fill_sap_suggestions(payload.cabecera, entrega, likp)}
    )
    header = await _insert_header(session, payload, user_id)
    await _link_delivery(session, header, entrega)

    logger.bind(
        id_cabecera_flete=header.id_cabecera_flete,
        id_sap_entrega=id_sap_entrega,
        estado=header.estado,
    ).info("flete_created")
    return _created(header, id_sap_entrega=id_sap_entrega)


async def ingest_candidate(
    session: AsyncSession, id_sap_entrega: int, user_id: Optional[int] = None
) -> Dict[str, Any]:
    """Create a header straight from the delivery's SAP suggestions.

    Lines are copied from the de-duplicated SAP positions.
    """

    entrega, likp = await reconciliation.load_delivery(session, id_sap_entrega, for_update=True)
    await _ensure_delivery_unlinked(session, id_sap_entrega)

    evaluation = await reconciliation.evaluate_delivery(session, likp)
    if not evaluation.puede_ingresar:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=evaluation.motivo_no_ingreso,
        )

    positions = await reconciliation.current_positions(
        session, entrega.source_system, entrega.sap_numero_entrega
    )
    detalles = [
        FleteDetallePayload(
            material=position["sap_material"],
            descripcion=position["sap_denominacion_material"],
            cantidad=(
                Decimal(str(position["sap_cantidad_entregada"])).quantize(TWO_PLACES)
                if position["sap_cantidad_entregada"] is not None
                else None
            ),
            unidad=position["sap_unidad_peso"],
        )
        for position in positions
    ]
    cabecera = FleteCabeceraPayload(
        id_tipo_flete=evaluation.id_tipo_flete,
        id_centro_costo_final=evaluation.id_centro_costo_final,
        tipo_movimiento="PUSH",
        fecha_salida=likp.sap_fecha_salida,
        hora_salida=likp.sap_hora_salida,
    )
    payload = FleteUpsertPayload(
        cabecera=_fill_sap_suggestions(cabecera, entrega, likp), detalles=detalles
    )
    header = await _insert_header(session, payload, user_id)
    await _link_delivery(session, header, entrega)

    logger.bind(
        id_cabecera_flete=header.id_cabecera_flete,
        id_sap_entrega=id_sap_entrega,
        lines=len(detalles),
        estado=header.estado,
    ).info("sap_delivery_ingested")
    return _created(header, id_sap_entrega=id_sap_entrega)


async def create_manual(
    session: AsyncSession, payload: FleteUpsertPayload, user_id: Optional[int] = None
) -> Dict[str, Any]:
    """Create a header with no SAP delivery behind it."""

    header = await _insert_header(session, payload, user_id)
    logger.bind(id_cabecera_flete=header.id_cabecera_flete, estado=header.estado).info(
        "flete_manual_created"
    )
    return _created(header)


async def update_header(
    session: AsyncSession, header_id: int, payload: FleteUpsertPayload
) -> Dict[str, Any]:
    """Replace every header field and all of its lines; folio binding is kept."""

    header = await session.scalar(
        select(CflCabeceraFlete)
        .where(CflCabeceraFlete.id_cabecera_flete == header_id)
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    )
    if header is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Flete no encontrado")
    current = normalize_status(header.estado)
    if current in TERMINAL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"No se puede modificar un flete en estado {current.value}",
        )

    cabecera = payload.cabecera
    id_movil = await resolve_vehicle_assignment(session, cabecera)
    folio_number = await resolve_folio_number(session, header.id_folio)
    estado = _derive_status(cabecera, folio_number, id_movil, len(payload.detalles))

    _apply_header_fields(header, cabecera, id_movil, estado)
    header.updated_at = _now()

    await session.execute(
        delete(CflDetalleFlete).where(CflDetalleFlete.id_cabecera_flete == header_id)
    )
    lines = build_lines(payload.detalles)
    for line in lines:
        line.id_cabecera_flete = header_id
    session.add_all(lines)
    await session.flush()

    logger.bind(id_cabecera_flete=header_id, estado=header.estado, lines=len(lines)).info(
        "flete_updated"
    )
    return {
        "id_cabecera_flete": header_id,
        "estado": header.estado,
        "id_movil": header.id_movil,
        "detalles": len(lines),
    }


async def get_header(session: AsyncSession, header_id: int) -> Dict[str, Any]:
    header = await session.scalar(
        select(CflCabeceraFlete)
        .options(selectinload(CflCabeceraFlete.detalles), selectinload(CflCabeceraFlete.sap_link))
        .where(CflCabeceraFlete.id_cabecera_flete == header_id)
    )
    if header is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Flete no encontrado")
    current = normalize_status(header.estado)
    cabecera = header.to_dict()
    cabecera["estado"] = current.value if current else header.estado
    cabecera["id_sap_entrega"] = header.sap_link.id_sap_entrega if header.sap_link else None
    return {
        "cabecera": cabecera,
        "detalles": [line.to_dict() for line in header.detalles],
    }
