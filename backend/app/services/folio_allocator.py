"""Folio creation and header-to-folio (re)binding.

Every public coroutine here expects to run inside a unit of work opened by the
caller (see ``app.core.db.unit_of_work``). Batch operations validate every
header before writing any of them; an ineligible row aborts the batch with a
422 listing each offending id and its reason.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.cfl_catalog import CflTemporada
from app.models.cfl_flete import CflCabeceraFlete, CflFleteSapEntrega
from app.models.cfl_folio import DEFAULT_FOLIO_NUMBER, FOLIO_ESTADO_ABIERTO, CflFolio
from app.models.cfl_sap import CflSapEntrega
from app.services.lifecycle import (
    FreightStatus,
    TERMINAL_STATUSES,
    can_void,
    has_real_folio,
    normalize_status,
    status_for_folio_number,
)

INELIGIBLE_BATCH_MESSAGE = "Hay registros no elegibles"
FOLIO_ELIGIBLE_STATUSES = frozenset({FreightStatus.COMPLETADO, FreightStatus.ASIGNADO_FOLIO})


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _numeric_folio(folio_numero: Optional[str]) -> Optional[int]:
    token = (folio_numero or "").strip()
    return int(token) if token.isdigit() else None


def next_folio_number(existing: Iterable[Optional[str]]) -> str:
    """``max(numeric folio numbers) + 1``; non-numeric numbers are ignored."""

    numbers = [n for n in (_numeric_folio(value) for value in existing) if n is not None]
    return str(max(numbers, default=0) + 1)


def folio_ineligibility_reason(
    header: CflCabeceraFlete,
    current_folio_number: Optional[str],
    target_folio_id: Optional[int] = None,
) -> Optional[str]:
    """Why ``header`` cannot be bound to a folio, or ``None`` if it can.

    A header already sitting on ``target_folio_id`` stays eligible so that
    re-submitting the same assignment is harmless.
    """

    current = normalize_status(header.estado)
    if current not in FOLIO_ELIGIBLE_STATUSES:
        return f"Estado invalido: {header.estado}"
    if target_folio_id is not None and header.id_folio == target_folio_id:
        return None
    if has_real_folio(current_folio_number):
        return "Ya tiene folio asignado"
    return None


def _unprocessable(invalid: List[Dict[str, Any]]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"error": INELIGIBLE_BATCH_MESSAGE, "invalid": invalid},
    )


async def _lock_headers(
    session: AsyncSession, header_ids: Sequence[int]
) -> Dict[int, CflCabeceraFlete]:
    # Lock in id order so concurrent batches over overlapping ids cannot deadlock.
    rows = (
        await session.execute(
            select(CflCabeceraFlete)
            .where(CflCabeceraFlete.id_cabecera_flete.in_(list(header_ids)))
            .order_by(CflCabeceraFlete.id_cabecera_flete)
            .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        )
    ).scalars().all()
    return {row.id_cabecera_flete: row for row in rows}


async def _folio_numbers(session: AsyncSession, folio_ids: Iterable[Optional[int]]) -> Dict[int, str]:
    ids = {folio_id for folio_id in folio_ids if folio_id}
    if not ids:
        return {}
    rows = await session.execute(
        select(CflFolio.id_folio, CflFolio.folio_numero).where(CflFolio.id_folio.in_(sorted(ids)))
    )
    return {folio_id: numero for folio_id, numero in rows.all()}


async def lock_folio(session: AsyncSession, folio_id: int) -> CflFolio:
    folio = await session.scalar(
        select(CflFolio)
        .where(CflFolio.id_folio == folio_id)
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    )
    if folio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folio no encontrado")
    return folio


def ensure_folio_open(folio: CflFolio, role: str = "El folio") -> None:
    if folio.bloqueado:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=f"{role} esta bloqueado"
        )
    if (folio.estado or "").strip().upper() != FOLIO_ESTADO_ABIERTO:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{role} no esta abierto (estado {folio.estado})",
        )


async def resolve_current_season(session: AsyncSession) -> CflTemporada:
    """Season new folios are created in: open ones first, then latest start date."""

    season = await session.scalar(
        select(CflTemporada)
        .order_by(
            CflTemporada.cerrada.asc(),
            CflTemporada.activa.desc(),
            CflTemporada.fecha_inicio.desc(),
            CflTemporada.id_temporada.desc(),
        )
        .limit(1)
    )
    if season is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No existe una temporada vigente para crear el folio",
        )
    return season


async def _reserve_folio_number(
    session: AsyncSession, id_temporada: int, id_centro_costo: int
) -> str:
    """Lock the (season, cost center) bucket and return its next folio number.

    The FOR UPDATE read holds next-key locks on the bucket's index range until
    commit, so allocators for the same bucket serialize while other buckets
    proceed independently.
    """

    existing = (
        await session.execute(
            select(CflFolio.folio_numero)
            .where(
                CflFolio.id_temporada == id_temporada,
                CflFolio.id_centro_costo == id_centro_costo,
            )
            .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        )
    ).scalars().all()
    return next_folio_number(existing)


async def create_folio_for_headers(
    session: AsyncSession, header_ids: Sequence[int]
) -> Dict[str, Any]:
    """Create the next folio for the headers' cost center and bind them to it."""

    headers = await _lock_headers(session, header_ids)

    centros = sorted(
        {h.id_centro_costo_final for h in headers.values() if h.id_centro_costo_final is not None}
    )
    if len(centros) > 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": "Los fletes seleccionados pertenecen a distintos centros de costo",
                "centros_costo": centros,
            },
        )

    folio_numbers = await _folio_numbers(session, (h.id_folio for h in headers.values()))
    invalid: List[Dict[str, Any]] = []
    for header_id in header_ids:
        header = headers.get(header_id)
        if header is None:
            invalid.append({"id_cabecera_flete": header_id, "reason": "No existe"})
            continue
        if header.id_centro_costo_final is None:
            invalid.append({"id_cabecera_flete": header_id, "reason": "Sin centro de costo"})
            continue
        reason = folio_ineligibility_reason(header, folio_numbers.get(header.id_folio))
        if reason:
            invalid.append({"id_cabecera_flete": header_id, "reason": reason})
    if invalid:
        raise _unprocessable(invalid)

    id_centro_costo = centros[0]
    season = await resolve_current_season(session)
    numero = await _reserve_folio_number(session, season.id_temporada, id_centro_costo)
    fechas = [h.fecha_salida for h in headers.values() if h.fecha_salida is not None]
    now = _now()

    folio = CflFolio(
        id_centro_costo=id_centro_costo,
        id_temporada=season.id_temporada,
        folio_numero=numero,
        periodo_desde=min(fechas) if fechas else None,
        periodo_hasta=max(fechas) if fechas else None,
        estado=FOLIO_ESTADO_ABIERTO,
        bloqueado=False,
        created_at=now,
        updated_at=now,
    )
    session.add(folio)
    try:
        await session.flush()
    except IntegrityError as exc:
        logger.bind(
            id_temporada=season.id_temporada,
            id_centro_costo=id_centro_costo,
            folio_numero=numero,
        ).warning("folio_number_race")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Otro proceso asigno el mismo numero de folio. Reintente la operacion.",
        ) from exc

    for header in headers.values():
        header.id_folio = folio.id_folio
        header.estado = FreightStatus.ASIGNADO_FOLIO.value
        header.updated_at = now
    await session.flush()

    logger.bind(
        id_folio=folio.id_folio,
        folio_numero=numero,
        id_temporada=season.id_temporada,
        id_centro_costo=id_centro_costo,
        headers=len(headers),
    ).info("folio_created")
    return {
        "id_folio": folio.id_folio,
        "folio_numero": folio.folio_numero,
        "id_temporada": folio.id_temporada,
        "id_centro_costo": folio.id_centro_costo,
        "periodo_desde": folio.periodo_desde,
        "periodo_hasta": folio.periodo_hasta,
        "estado": FreightStatus.ASIGNADO_FOLIO.value,
        "updated": len(headers),
    }


async def assign_existing_folio(
    session: AsyncSession, folio_id: int, header_ids: Sequence[int]
) -> Dict[str, Any]:
    """Bind headers to an existing open folio; folio "0" leaves them COMPLETADO."""

    folio = await lock_folio(session, folio_id)
    ensure_folio_open(folio)

    headers = await _lock_headers(session, header_ids)
    folio_numbers = await _folio_numbers(session, (h.id_folio for h in headers.values()))
    invalid: List[Dict[str, Any]] = []
    for header_id in header_ids:
        header = headers.get(header_id)
        if header is None:
            invalid.append({"id_cabecera_flete": header_id, "reason": "No existe"})
            continue
        reason = folio_ineligibility_reason(
            header, folio_numbers.get(header.id_folio), target_folio_id=folio.id_folio
        )
        if reason is None and header.id_centro_costo_final != folio.id_centro_costo:
            reason = "Centro de costo distinto al del folio"
        if reason:
            invalid.append({"id_cabecera_flete": header_id, "reason": reason})
    if invalid:
        raise _unprocessable(invalid)

    new_status = status_for_folio_number(folio.folio_numero)
    now = _now()
    for header in headers.values():
        header.id_folio = folio.id_folio
        header.estado = new_status.value
        header.updated_at = now
    await session.flush()

    logger.bind(
        id_folio=folio.id_folio,
        folio_numero=folio.folio_numero,
        headers=len(headers),
        estado=new_status.value,
    ).info("folio_assigned")
    return {
        "id_folio": folio.id_folio,
        "folio_numero": folio.folio_numero,
        "estado": new_status.value,
        "updated": len(headers),
    }


async def resolve_default_folio(
    session: AsyncSession, id_temporada: int, id_centro_costo: int
) -> CflFolio:
    """Return the bucket's folio "0", creating it on first use."""

    folio = await session.scalar(
        select(CflFolio)
        .where(
            CflFolio.id_temporada == id_temporada,
            CflFolio.id_centro_costo == id_centro_costo,
            CflFolio.folio_numero == DEFAULT_FOLIO_NUMBER,
        )
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    )
    if folio is not None:
        return folio
    now = _now()
    folio = CflFolio(
        id_temporada=id_temporada,
        id_centro_costo=id_centro_costo,
        folio_numero=DEFAULT_FOLIO_NUMBER,
        estado=FOLIO_ESTADO_ABIERTO,
        bloqueado=False,
        created_at=now,
        updated_at=now,
    )
    session.add(folio)
    await session.flush()
    logger.bind(id_temporada=id_temporada, id_centro_costo=id_centro_costo).info(
        "default_folio_created"
    )
    return folio


async def _header_by_delivery_number(
    session: AsyncSession, sap_numero_entrega: str, source_system: Optional[str]
) -> CflCabeceraFlete:
    linked = (
        select(CflFleteSapEntrega.id_cabecera_flete)
        .join(CflSapEntrega, CflSapEntrega.id_sap_entrega == CflFleteSapEntrega.id_sap_entrega)
        .where(CflSapEntrega.sap_numero_entrega == sap_numero_entrega)
    )
    if source_system:
        linked = linked.where(CflSapEntrega.source_system == source_system)
    ids = set((await session.execute(linked)).scalars().all())
    if not ids:
        # Manually created headers only carry the suggested delivery number.
        manual = select(CflCabeceraFlete.id_cabecera_flete).where(
            CflCabeceraFlete.sap_numero_entrega_sugerido == sap_numero_entrega
        )
        ids = set((await session.execute(manual)).scalars().all())
    if not ids:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No existe flete para la entrega SAP {sap_numero_entrega}",
        )
    if len(ids) > 1:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"La entrega SAP {sap_numero_entrega} esta asociada a varios fletes; indique source_system",
        )
    headers = await _lock_headers(session, sorted(ids))
    return headers[next(iter(ids))]


def _ensure_not_terminal(header: CflCabeceraFlete) -> None:
    current = normalize_status(header.estado)
    if current in TERMINAL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"El flete {header.id_cabecera_flete} esta en estado {current.value}",
        )


async def list_folio_movements(session: AsyncSession, folio_id: int) -> Dict[str, Any]:
    folio = await session.get(CflFolio, folio_id)
    if folio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Folio no encontrado")

    stmt = (
        select(
            CflCabeceraFlete,
            CflSapEntrega.sap_numero_entrega,
            CflSapEntrega.source_system,
        )
        .outerjoin(
            CflFleteSapEntrega,
            CflFleteSapEntrega.id_cabecera_flete == CflCabeceraFlete.id_cabecera_flete,
        )
        .outerjoin(CflSapEntrega, CflSapEntrega.id_sap_entrega == CflFleteSapEntrega.id_sap_entrega)
        .where(CflCabeceraFlete.id_folio == folio_id)
        .order_by(CflCabeceraFlete.fecha_salida.desc(), CflCabeceraFlete.id_cabecera_flete.desc())
    )
    movimientos = []
    for header, numero, source_system in (await session.execute(stmt)).all():
        current = normalize_status(header.estado)
        movimientos.append(
            {
                "id_cabecera_flete": header.id_cabecera_flete,
                "estado": current.value if current else header.estado,
                "tipo_movimiento": header.tipo_movimiento,
                "fecha_salida": header.fecha_salida,
                "hora_salida": header.hora_salida,
                "monto_aplicado": header.monto_aplicado,
                "id_centro_costo_final": header.id_centro_costo_final,
                "sap_numero_entrega": numero or header.sap_numero_entrega_sugerido,
                "source_system": source_system,
                "updated_at": header.updated_at,
            }
        )
    return {
        "folio": {
            "id_folio": folio.id_folio,
            "folio_numero": folio.folio_numero,
            "id_temporada": folio.id_temporada,
            "id_centro_costo": folio.id_centro_costo,
            "estado": folio.estado,
            "bloqueado": folio.bloqueado,
        },
        "movimientos": movimientos,
    }


async def assign_by_delivery_number(
    session: AsyncSession,
    folio_id: int,
    sap_numero_entrega: str,
    source_system: Optional[str] = None,
) -> Dict[str, Any]:
    """Manually move one freight movement onto an open, non-default folio."""

    folio = await lock_folio(session, folio_id)
    if folio.is_default:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No se puede asignar manualmente al folio 0",
        )
    ensure_folio_open(folio)

    header = await _header_by_delivery_number(session, sap_numero_entrega, source_system)
    _ensure_not_terminal(header)
    if header.id_centro_costo_final != folio.id_centro_costo:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="El centro de costo del flete no coincide con el del folio",
        )
    if header.id_folio and header.id_folio != folio.id_folio:
        source = await lock_folio(session, header.id_folio)
        if not source.is_default:
            ensure_folio_open(source, role="El folio de origen")

    header.id_folio = folio.id_folio
    header.estado = FreightStatus.ASIGNADO_FOLIO.value
    header.updated_at = _now()
    await session.flush()

    logger.bind(
        id_folio=folio.id_folio,
        id_cabecera_flete=header.id_cabecera_flete,
        sap_numero_entrega=sap_numero_entrega,
    ).info("folio_movement_assigned")
    return {
        "id_cabecera_flete": header.id_cabecera_flete,
        "id_folio": folio.id_folio,
        "folio_numero": folio.folio_numero,
        "estado": header.estado,
    }


async def unassign_by_delivery_number(
    session: AsyncSession,
    folio_id: int,
    sap_numero_entrega: str,
    source_system: Optional[str] = None,
) -> Dict[str, Any]:
    """Move one freight movement from an open folio back to its bucket's default folio."""

    folio = await lock_folio(session, folio_id)
    if folio.is_default:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="El folio 0 no tiene movimientos asignados que liberar",
        )
    ensure_folio_open(folio)

    header = await _header_by_delivery_number(session, sap_numero_entrega, source_system)
    if header.id_folio != folio.id_folio:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"El flete {header.id_cabecera_flete} no pertenece al folio {folio.folio_numero}",
        )
    _ensure_not_terminal(header)

    default_folio = await resolve_default_folio(session, folio.id_temporada, folio.id_centro_costo)
    new_status = status_for_folio_number(default_folio.folio_numero)
    header.id_folio = default_folio.id_folio
    header.estado = new_status.value
    header.updated_at = _now()
    await session.flush()

    logger.bind(
        id_folio=folio.id_folio,
        id_folio_default=default_folio.id_folio,
        id_cabecera_flete=header.id_cabecera_flete,
    ).info("folio_movement_unassigned")
    return {
        "id_cabecera_flete": header.id_cabecera_flete,
        "id_folio": default_folio.id_folio,
        "folio_numero": default_folio.folio_numero,
        "estado": new_status.value,
    }


async def void_header(session: AsyncSession, header_id: int) -> Dict[str, Any]:
    """Mark a header ANULADO; invoiced headers are never touched."""

    headers = await _lock_headers(session, [header_id])
    header = headers.get(header_id)
    if header is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Flete no encontrado")

    current = normalize_status(header.estado)
    if not can_void(current):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No se puede anular un flete facturado",
        )
    previous = current.value if current else header.estado
    if current is not FreightStatus.ANULADO:
        header.estado = FreightStatus.ANULADO.value
        header.updated_at = _now()
        await session.flush()
        logger.bind(id_cabecera_flete=header_id, estado_anterior=previous).info("flete_voided")
    return {
        "id_cabecera_flete": header_id,
        "estado": FreightStatus.ANULADO.value,
        "estado_anterior": previous,
    }
