"""Reconciliation of SAP deliveries against freight headers.

Finds deliveries with no linked header, resolves the freight type and cost
center their SAP codes point at, and explains why a candidate cannot be
ingested automatically. Read-only.

SAP positions are de-duplicated with a ``ROW_NUMBER()`` window over
(source system, delivery number, position): rows carrying a parent position
win, then the latest extraction, then the highest raw id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import and_, case, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.cfl_catalog import CflCentroCosto, CflTipoFlete
from app.models.cfl_flete import CflCabeceraFlete, CflDetalleFlete, CflFleteSapEntrega
from app.models.cfl_folio import DEFAULT_FOLIO_NUMBER, CflFolio
from app.models.cfl_sap import CflSapEntrega, CflSapLikpCurrent, CflSapLipsRaw
from app.services.lifecycle import (
    FreightStatus,
    LifecycleInputs,
    derive_lifecycle_status,
    normalize_status,
    stored_spellings,
)

CANDIDATE_STATUS = "DETECTADO"
ACTIVE_ROW_STATUS = "ACTIVE"

_likp_join = and_(
    CflSapLikpCurrent.source_system == CflSapEntrega.source_system,
    CflSapLikpCurrent.sap_numero_entrega == CflSapEntrega.sap_numero_entrega,
)


@dataclass(frozen=True)
class CandidateFilters:
    search: Optional[str] = None
    source_system: Optional[str] = None
    fecha_desde: Optional[date] = None
    fecha_hasta: Optional[date] = None
    estado: Optional[str] = None


@dataclass(frozen=True)
class CandidateEvaluation:
    id_tipo_flete: Optional[int]
    tipo_flete_nombre: Optional[str]
    id_centro_costo_final: Optional[int]
    puede_ingresar: bool
    motivo_no_ingreso: Optional[str]


def clean_text(value: Any) -> Optional[str]:
    """Trimmed string, or ``None`` for blanks."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def evaluate_candidate(
    sap_codigo_tipo_flete: Optional[str],
    sap_centro_costo: Optional[str],
    tipo_flete: Optional[CflTipoFlete],
    centro_costo: Optional[CflCentroCosto],
    fecha_salida: Optional[date],
    hora_salida: Optional[time],
) -> CandidateEvaluation:
    """Decide whether a delivery can be ingested; the first unmet condition wins."""

    id_centro_costo = None
    if centro_costo is not None:
        id_centro_costo = centro_costo.id_centro_costo
    elif tipo_flete is not None:
        id_centro_costo = tipo_flete.id_centro_costo

    reason: Optional[str] = None
    if tipo_flete is None:
        reason = (
            "Falta configurar Tipo de Flete para sap_codigo_tipo_flete="
            f"{clean_text(sap_codigo_tipo_flete) or '(NULL)'}"
        )
    elif id_centro_costo is None:
        reason = (
            "No se pudo resolver Centro de Costo "
            f"(sap_centro_costo={clean_text(sap_centro_costo) or '(NULL)'})"
        )
    elif fecha_salida is None:
        reason = "Falta sap_fecha_salida"
    elif hora_salida is None:
        reason = "Falta sap_hora_salida"

    return CandidateEvaluation(
        id_tipo_flete=tipo_flete.id_tipo_flete if tipo_flete else None,
        tipo_flete_nombre=tipo_flete.nombre if tipo_flete else None,
        id_centro_costo_final=id_centro_costo,
        puede_ingresar=reason is None,
        motivo_no_ingreso=reason,
    )


def ranked_positions(
    source_system: Optional[str] = None, sap_numeros: Optional[Iterable[str]] = None
):
    """Active LIPS rows with their de-duplication rank as column ``rn``."""

    lips = CflSapLipsRaw
    rn = func.row_number().over(
        partition_by=(lips.source_system, lips.sap_numero_entrega, lips.sap_posicion),
        order_by=(
            case((lips.sap_posicion_superior.is_not(None), 0), else_=1),
            lips.extracted_at.desc(),
            lips.raw_id.desc(),
        ),
    )
    stmt = select(
        lips.raw_id,
        lips.source_system,
        lips.sap_numero_entrega,
        lips.sap_posicion,
        lips.sap_posicion_superior,
        lips.sap_material,
        lips.sap_denominacion_material,
        lips.sap_cantidad_entregada,
        lips.sap_unidad_peso,
        lips.sap_centro,
        lips.sap_almacen,
        lips.sap_lote,
        rn.label("rn"),
    ).where(lips.row_status == ACTIVE_ROW_STATUS)
    if source_system is not None:
        stmt = stmt.where(lips.source_system == source_system)
    if sap_numeros is not None:
        stmt = stmt.where(lips.sap_numero_entrega.in_(list(sap_numeros)))
    return stmt.subquery("lips_ranked")


async def current_positions(
    session: AsyncSession, source_system: str, sap_numero_entrega: str
) -> List[Dict[str, Any]]:
    """De-duplicated positions of one delivery, ordered by position."""

    ranked = ranked_positions(source_system, [sap_numero_entrega])
    stmt = (
        select(
            ranked.c.sap_posicion,
            ranked.c.sap_material,
            ranked.c.sap_denominacion_material,
            ranked.c.sap_cantidad_entregada,
            ranked.c.sap_unidad_peso,
            ranked.c.sap_centro,
            ranked.c.sap_almacen,
            ranked.c.sap_posicion_superior,
            ranked.c.sap_lote,
        )
        .where(ranked.c.rn == 1)
        .order_by(ranked.c.sap_posicion.asc())
    )
    return [dict(row) for row in (await session.execute(stmt)).mappings().all()]


async def _position_totals(
    session: AsyncSession, keys: Iterable[Tuple[str, str]]
) -> Dict[Tuple[str, str], Tuple[int, Decimal]]:
    keys = set(keys)
    if not keys:
        return {}
    ranked = ranked_positions(sap_numeros={numero for _, numero in keys})
    stmt = (
        select(
            ranked.c.source_system,
            ranked.c.sap_numero_entrega,
            func.count(ranked.c.sap_posicion),
            func.coalesce(func.sum(ranked.c.sap_cantidad_entregada), 0),
        )
        .where(ranked.c.rn == 1)
        .group_by(ranked.c.source_system, ranked.c.sap_numero_entrega)
    )
    totals: Dict[Tuple[str, str], Tuple[int, Decimal]] = {}
    for source_system, numero, count, quantity in (await session.execute(stmt)).all():
        if (source_system, numero) in keys:
            totals[(source_system, numero)] = (int(count), Decimal(str(quantity)))
    return totals


async def freight_types_by_code(
    session: AsyncSession, codes: Iterable[Optional[str]]
) -> Dict[str, CflTipoFlete]:
    """First freight type per SAP code, active ones first then lowest id."""

    wanted = {code for code in codes if code}
    if not wanted:
        return {}
    rows = (
        await session.execute(
            select(CflTipoFlete)
            .where(CflTipoFlete.sap_codigo.in_(sorted(wanted)))
            .order_by(CflTipoFlete.activo.desc(), CflTipoFlete.id_tipo_flete.asc())
        )
    ).scalars().all()
    found: Dict[str, CflTipoFlete] = {}
    for row in rows:
        found.setdefault(row.sap_codigo, row)
    return found


async def cost_centers_by_code(
    session: AsyncSession, codes: Iterable[Optional[str]]
) -> Dict[str, CflCentroCosto]:
    wanted = {code for code in codes if code}
    if not wanted:
        return {}
    rows = (
        await session.execute(
            select(CflCentroCosto)
            .where(CflCentroCosto.sap_codigo.in_(sorted(wanted)))
            .order_by(CflCentroCosto.activo.desc(), CflCentroCosto.id_centro_costo.asc())
        )
    ).scalars().all()
    found: Dict[str, CflCentroCosto] = {}
    for row in rows:
        found.setdefault(row.sap_codigo, row)
    return found


async def evaluate_delivery(
    session: AsyncSession, likp: Optional[CflSapLikpCurrent]
) -> CandidateEvaluation:
    """Resolve lookups for a single delivery header snapshot and evaluate it."""

    tipo_code = clean_text(likp.sap_codigo_tipo_flete) if likp else None
    cc_code = clean_text(likp.sap_centro_costo) if likp else None
    tipos = await freight_types_by_code(session, [tipo_code])
    centros = await cost_centers_by_code(session, [cc_code])
    return evaluate_candidate(
        tipo_code,
        cc_code,
        tipos.get(tipo_code) if tipo_code else None,
        centros.get(cc_code) if cc_code else None,
        likp.sap_fecha_salida if likp else None,
        likp.sap_hora_salida if likp else None,
    )


def _delivery_header(entrega: CflSapEntrega, likp: Optional[CflSapLikpCurrent]) -> Dict[str, Any]:
    def sap(field: str) -> Any:
        return getattr(likp, field) if likp is not None else None

    return {
        "id_sap_entrega": entrega.id_sap_entrega,
        "sap_numero_entrega": entrega.sap_numero_entrega,
        "source_system": entrega.source_system,
        "sap_referencia": clean_text(sap("sap_referencia")),
        "sap_guia_remision": clean_text(sap("sap_guia_remision")),
        "sap_codigo_tipo_flete": clean_text(sap("sap_codigo_tipo_flete")),
        "sap_centro_costo": clean_text(sap("sap_centro_costo")),
        "sap_cuenta_mayor": clean_text(sap("sap_cuenta_mayor")),
        "sap_fecha_salida": sap("sap_fecha_salida"),
        "sap_hora_salida": sap("sap_hora_salida"),
        "sap_empresa_transporte": clean_text(sap("sap_empresa_transporte")),
        "sap_nombre_chofer": clean_text(sap("sap_nombre_chofer")),
        "sap_patente": clean_text(sap("sap_patente")),
        "sap_carro": clean_text(sap("sap_carro")),
        "sap_peso_total": sap("sap_peso_total"),
        "sap_peso_neto": sap("sap_peso_neto"),
        "last_seen_at": entrega.last_seen_at,
        "updated_at": entrega.updated_at,
    }


def _candidate_conditions(filters: CandidateFilters) -> list:
    linked = exists().where(CflFleteSapEntrega.id_sap_entrega == CflSapEntrega.id_sap_entrega)
    conds: list = [~linked]
    search = clean_text(filters.search)
    if search:
        like = f"%{search}%"
        conds.append(
            or_(
                CflSapEntrega.sap_numero_entrega.ilike(like),
                CflSapLikpCurrent.sap_referencia.ilike(like),
                CflSapLikpCurrent.sap_empresa_transporte.ilike(like),
                CflSapLikpCurrent.sap_nombre_chofer.ilike(like),
                CflSapLikpCurrent.sap_patente.ilike(like),
            )
        )
    source_system = clean_text(filters.source_system)
    if source_system:
        conds.append(CflSapEntrega.source_system == source_system)
    if filters.fecha_desde:
        conds.append(CflSapLikpCurrent.sap_fecha_salida >= filters.fecha_desde)
    if filters.fecha_hasta:
        conds.append(CflSapLikpCurrent.sap_fecha_salida <= filters.fecha_hasta)
    return conds


async def list_missing_deliveries(
    session: AsyncSession, filters: CandidateFilters, page: int, page_size: int
) -> Tuple[List[Dict[str, Any]], int]:
    """Page of SAP deliveries that no freight header references yet."""

    estado = clean_text(filters.estado)
    if estado and estado.upper() != CANDIDATE_STATUS:
        # Candidates are always DETECTADO; any other status matches nothing.
        return [], 0

    conds = _candidate_conditions(filters)
    count_stmt = (
        select(func.count(CflSapEntrega.id_sap_entrega))
        .select_from(CflSapEntrega)
        .outerjoin(CflSapLikpCurrent, _likp_join)
        .where(*conds)
    )
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        select(CflSapEntrega, CflSapLikpCurrent)
        .outerjoin(CflSapLikpCurrent, _likp_join)
        .where(*conds)
        .order_by(
            func.coalesce(CflSapLikpCurrent.sap_fecha_salida, CflSapEntrega.updated_at).desc(),
            CflSapEntrega.id_sap_entrega.desc(),
        )
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    page_rows = (await session.execute(stmt)).all()

    tipos = await freight_types_by_code(
        session, (clean_text(likp.sap_codigo_tipo_flete) for _, likp in page_rows if likp)
    )
    centros = await cost_centers_by_code(
        session, (clean_text(likp.sap_centro_costo) for _, likp in page_rows if likp)
    )
    totals = await _position_totals(
        session, ((e.source_system, e.sap_numero_entrega) for e, _ in page_rows)
    )

    data: List[Dict[str, Any]] = []
    for entrega, likp in page_rows:
        row = _delivery_header(entrega, likp)
        evaluation = evaluate_candidate(
            row["sap_codigo_tipo_flete"],
            row["sap_centro_costo"],
            tipos.get(row["sap_codigo_tipo_flete"] or ""),
            centros.get(row["sap_centro_costo"] or ""),
            row["sap_fecha_salida"],
            row["sap_hora_salida"],
        )
        count, quantity = totals.get(
            (entrega.source_system, entrega.sap_numero_entrega), (0, Decimal("0"))
        )
        row.update(
            posiciones_total=count,
            cantidad_entregada_total=quantity,
            id_tipo_flete=evaluation.id_tipo_flete,
            tipo_flete_nombre=evaluation.tipo_flete_nombre,
            id_centro_costo_final=evaluation.id_centro_costo_final,
            estado=CANDIDATE_STATUS,
            puede_ingresar=evaluation.puede_ingresar,
            motivo_no_ingreso=evaluation.motivo_no_ingreso,
        )
        data.append(row)
    return data, int(total)


async def load_delivery(
    session: AsyncSession, id_sap_entrega: int, *, for_update: bool = False
) -> Tuple[CflSapEntrega, Optional[CflSapLikpCurrent]]:
    stmt = select(CflSapEntrega).where(CflSapEntrega.id_sap_entrega == id_sap_entrega)
    if for_update:
        stmt = stmt.with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    entrega = await session.scalar(stmt)
    if entrega is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Entrega SAP no encontrada"
        )
    likp = await session.get(
        CflSapLikpCurrent, (entrega.source_system, entrega.sap_numero_entrega)
    )
    return entrega, likp


async def get_delivery_detail(session: AsyncSession, id_sap_entrega: int) -> Dict[str, Any]:
    """Header fields of one delivery plus its de-duplicated positions."""

    entrega, likp = await load_delivery(session, id_sap_entrega)
    cabecera = _delivery_header(entrega, likp)
    evaluation = await evaluate_delivery(session, likp)
    cabecera.update(
        id_tipo_flete=evaluation.id_tipo_flete,
        tipo_flete_nombre=evaluation.tipo_flete_nombre,
        id_centro_costo_final=evaluation.id_centro_costo_final,
        puede_ingresar=evaluation.puede_ingresar,
        motivo_no_ingreso=evaluation.motivo_no_ingreso,
    )
    posiciones = await current_positions(
        session, entrega.source_system, entrega.sap_numero_entrega
    )
    return {"cabecera": cabecera, "posiciones": posiciones}


async def dashboard_summary(session: AsyncSession) -> Dict[str, int]:
    total = (await session.execute(select(func.count(CflSapEntrega.id_sap_entrega)))).scalar_one()
    asociadas = (
        await session.execute(
            select(func.count(func.distinct(CflFleteSapEntrega.id_sap_entrega)))
        )
    ).scalar_one()
    linked = exists().where(CflFleteSapEntrega.id_sap_entrega == CflSapEntrega.id_sap_entrega)
    sin_cabecera = (
        await session.execute(select(func.count(CflSapEntrega.id_sap_entrega)).where(~linked))
    ).scalar_one()
    return {
        "total_entregas": int(total),
        "total_asociadas": int(asociadas),
        "total_sin_cabecera": int(sin_cabecera),
    }


async def list_complete_without_folio(
    session: AsyncSession, estado: Optional[str], page: int, page_size: int
) -> Tuple[List[Dict[str, Any]], int]:
    """Headers in ``estado`` (default COMPLETADO) with no folio or the default one."""

    wanted = normalize_status(estado) if clean_text(estado) else FreightStatus.COMPLETADO
    if wanted is None:
        return [], 0

    header = CflCabeceraFlete
    conds = [
        func.upper(func.trim(header.estado)).in_(stored_spellings(wanted)),
        or_(header.id_folio.is_(None), CflFolio.folio_numero == DEFAULT_FOLIO_NUMBER),
    ]
    count_stmt = (
        select(func.count(header.id_cabecera_flete))
        .select_from(header)
        .outerjoin(CflFolio, CflFolio.id_folio == header.id_folio)
        .where(*conds)
    )
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        select(
            header,
            CflFolio.folio_numero,
            CflTipoFlete.nombre.label("tipo_flete_nombre"),
            CflCentroCosto.nombre.label("centro_costo_final_nombre"),
            CflSapEntrega.id_sap_entrega,
            CflSapEntrega.sap_numero_entrega,
            CflSapEntrega.source_system,
            CflSapLikpCurrent.sap_guia_remision,
            CflSapLikpCurrent.sap_empresa_transporte,
            CflSapLikpCurrent.sap_nombre_chofer,
            CflSapLikpCurrent.sap_patente,
            CflSapLikpCurrent.sap_carro,
        )
        .outerjoin(CflFolio, CflFolio.id_folio == header.id_folio)
        .outerjoin(CflTipoFlete, CflTipoFlete.id_tipo_flete == header.id_tipo_flete)
        .outerjoin(CflCentroCosto, CflCentroCosto.id_centro_costo == header.id_centro_costo_final)
        .outerjoin(
            CflFleteSapEntrega, CflFleteSapEntrega.id_cabecera_flete == header.id_cabecera_flete
        )
        .outerjoin(CflSapEntrega, CflSapEntrega.id_sap_entrega == CflFleteSapEntrega.id_sap_entrega)
        .outerjoin(CflSapLikpCurrent, _likp_join)
        .where(*conds)
        .order_by(header.updated_at.desc(), header.id_cabecera_flete.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    rows = (await session.execute(stmt)).all()

    header_ids = [row[0].id_cabecera_flete for row in rows]
    line_counts: Dict[int, int] = {}
    if header_ids:
        counts = await session.execute(
            select(CflDetalleFlete.id_cabecera_flete, func.count(CflDetalleFlete.id_detalle_flete))
            .where(CflDetalleFlete.id_cabecera_flete.in_(header_ids))
            .group_by(CflDetalleFlete.id_cabecera_flete)
        )
        line_counts = {header_id: int(count) for header_id, count in counts.all()}

    data: List[Dict[str, Any]] = []
    for row in rows:
        flete: CflCabeceraFlete = row[0]
        folio_numero = row.folio_numero
        current = normalize_status(flete.estado)
        calculated = derive_lifecycle_status(
            LifecycleInputs(
                requested_status=current,
                folio_number=folio_numero,
                id_tipo_flete=flete.id_tipo_flete,
                id_centro_costo=flete.id_centro_costo_final,
                id_detalle_viaje=flete.id_detalle_viaje,
                id_movil=flete.id_movil,
                id_tarifa=flete.id_tarifa,
                line_count=line_counts.get(flete.id_cabecera_flete, 0),
            )
        )
        item = flete.to_dict()
        item.update(
            estado=current.value if current else flete.estado,
            estado_calculado=calculated.value,
            folio_numero=folio_numero,
            tipo_flete_nombre=row.tipo_flete_nombre,
            centro_costo_final_nombre=row.centro_costo_final_nombre,
            id_sap_entrega=row.id_sap_entrega,
            sap_numero_entrega=row.sap_numero_entrega,
            source_system=row.source_system,
            sap_guia_remision=clean_text(row.sap_guia_remision),
            sap_empresa_transporte=clean_text(row.sap_empresa_transporte),
            sap_nombre_chofer=clean_text(row.sap_nombre_chofer),
            sap_patente=clean_text(row.sap_patente),
            sap_carro=clean_text(row.sap_carro),
        )
        data.append(item)
    return data, int(total)
