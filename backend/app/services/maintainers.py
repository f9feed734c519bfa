"""Table-driven CRUD for the reference catalogs ("mantenedores").

Each entity slug maps to a ``MaintainerConfig`` naming the ORM model, which
fields a create requires or accepts, which fields an update may touch, and
the soft-delete column (hard delete when there is none). Incoming values are
coerced by column type; booleans accept the usual truthy spellings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.config import settings
from app.models.base import Base
from app.models.cfl_catalog import (
    CflCentroCosto,
    CflCuentaMayor,
    CflDetalleViaje,
    CflEspecie,
    CflTemporada,
    CflTipoFlete,
)
from app.models.cfl_folio import CflFolio
from app.models.cfl_security import CflUsuario
from app.models.cfl_transport import (
    CflCamion,
    CflChofer,
    CflEmpresaTransporte,
    CflMovil,
    CflNodoLogistico,
    CflRuta,
    CflTarifa,
    CflTipoCamion,
)
from app.services.lifecycle import is_default_folio_number

TRUTHY = {"1", "true", "t", "yes", "si", "y"}

_NodoOrigen = aliased(CflNodoLogistico, name="nodo_origen")
_NodoDestino = aliased(CflNodoLogistico, name="nodo_destino")


@dataclass(frozen=True)
class Lookup:
    """Display column pulled from a referenced table by foreign key."""

    label: str
    target: Any
    local_key: str
    remote_key: str
    column: str


@dataclass(frozen=True)
class MaintainerConfig:
    title: str
    model: Type[Base]
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()
    updatable: Tuple[str, ...] = ()
    order_by: Tuple[str, ...] = ()
    soft_delete_column: Optional[str] = None
    hidden: Tuple[str, ...] = ()
    lookups: Tuple[Lookup, ...] = ()

    @property
    def id_column(self) -> str:
        return inspect(self.model).primary_key[0].key


MAINTAINERS: Dict[str, MaintainerConfig] = {
    "temporadas": MaintainerConfig(
        title="Temporadas",
        model=CflTemporada,
        required=("codigo", "nombre", "fecha_inicio", "fecha_fin"),
        optional=("activa", "cerrada", "fecha_cierre", "id_usuario_cierre", "observacion_cierre"),
        updatable=(
            "codigo",
            "nombre",
            "fecha_inicio",
            "fecha_fin",
            "activa",
            "cerrada",
            "fecha_cierre",
            "id_usuario_cierre",
            "observacion_cierre",
        ),
        order_by=("-fecha_inicio",),
        soft_delete_column="activa",
    ),
    "centros-costo": MaintainerConfig(
        title="Centros de Costo",
        model=CflCentroCosto,
        required=("sap_codigo", "nombre"),
        optional=("activo",),
        updatable=("sap_codigo", "nombre", "activo"),
        order_by=("nombre",),
        soft_delete_column="activo",
    ),
    "tipos-flete": MaintainerConfig(
        title="Tipos de Flete",
        model=CflTipoFlete,
        required=("sap_codigo", "nombre", "id_centro_costo"),
        optional=("activo",),
        updatable=("sap_codigo", "nombre", "id_centro_costo", "activo"),
        order_by=("nombre",),
        soft_delete_column="activo",
        lookups=(
            Lookup("centro_costo_sap_codigo", CflCentroCosto, "id_centro_costo", "id_centro_costo", "sap_codigo"),
            Lookup("centro_costo_nombre", CflCentroCosto, "id_centro_costo", "id_centro_costo", "nombre"),
        ),
    ),
    "detalles-viaje": MaintainerConfig(
        title="Detalles de Viaje",
        model=CflDetalleViaje,
        required=("descripcion",),
        optional=("observacion", "activo"),
        updatable=("descripcion", "observacion", "activo"),
        order_by=("descripcion",),
        soft_delete_column="activo",
    ),
    "especies": MaintainerConfig(
        title="Especies",
        model=CflEspecie,
        required=("glosa",),
        updatable=("glosa",),
        order_by=("glosa",),
    ),
    "nodos": MaintainerConfig(
        title="Nodos Logisticos",
        model=CflNodoLogistico,
        required=("nombre", "region", "comuna", "ciudad", "calle"),
        optional=("activo",),
        updatable=("nombre", "region", "comuna", "ciudad", "calle", "activo"),
        order_by=("nombre",),
        soft_delete_column="activo",
    ),
    "rutas": MaintainerConfig(
        title="Rutas",
        model=CflRuta,
        required=("id_origen_nodo", "id_destino_nodo", "nombre_ruta"),
        optional=("distancia_km", "activo"),
        updatable=("id_origen_nodo", "id_destino_nodo", "nombre_ruta", "distancia_km", "activo"),
        order_by=("nombre_ruta",),
        soft_delete_column="activo",
        lookups=(
            Lookup("origen_nombre", _NodoOrigen, "id_origen_nodo", "id_nodo", "nombre"),
            Lookup("destino_nombre", _NodoDestino, "id_destino_nodo", "id_nodo", "nombre"),
        ),
    ),
    "tipos-camion": MaintainerConfig(
        title="Tipos de Camion",
        model=CflTipoCamion,
        required=("nombre", "categoria", "capacidad_kg", "requiere_temperatura"),
        optional=("descripcion", "activo"),
        updatable=(
            "nombre",
            "categoria",
            "capacidad_kg",
            "requiere_temperatura",
            "descripcion",
            "activo",
        ),
        order_by=("nombre",),
        soft_delete_column="activo",
    ),
    "camiones": MaintainerConfig(
        title="Camiones",
        model=CflCamion,
        required=("id_tipo_camion", "sap_patente", "sap_carro"),
        optional=("activo",),
        updatable=("id_tipo_camion", "sap_patente", "sap_carro", "activo"),
        order_by=("sap_patente", "sap_carro"),
        soft_delete_column="activo",
        lookups=(
            Lookup("tipo_camion_nombre", CflTipoCamion, "id_tipo_camion", "id_tipo_camion", "nombre"),
        ),
    ),
    "empresas-transporte": MaintainerConfig(
        title="Empresas de Transporte",
        model=CflEmpresaTransporte,
        required=("rut", "razon_social"),
        optional=("sap_codigo", "nombre_rep", "correo", "telefono", "activo"),
        updatable=("sap_codigo", "rut", "razon_social", "nombre_rep", "correo", "telefono", "activo"),
        order_by=("razon_social",),
        soft_delete_column="activo",
    ),
    "choferes": MaintainerConfig(
        title="Choferes",
        model=CflChofer,
        required=("sap_id_fiscal", "sap_nombre"),
        optional=("telefono", "activo"),
        updatable=("sap_id_fiscal", "sap_nombre", "telefono", "activo"),
        order_by=("sap_nombre",),
        soft_delete_column="activo",
    ),
    "tarifas": MaintainerConfig(
        title="Tarifas",
        model=CflTarifa,
        required=(
            "id_tipo_camion",
            "id_temporada",
            "id_ruta",
            "vigencia_desde",
            "prioridad",
            "regla",
            "moneda",
            "monto_fijo",
        ),
        optional=("vigencia_hasta", "activo"),
        updatable=(
            "id_tipo_camion",
            "id_temporada",
            "id_ruta",
            "vigencia_desde",
            "vigencia_hasta",
            "prioridad",
            "regla",
            "moneda",
            "monto_fijo",
            "activo",
        ),
        order_by=("-id_tarifa",),
        soft_delete_column="activo",
        lookups=(
            Lookup("tipo_camion_nombre", CflTipoCamion, "id_tipo_camion", "id_tipo_camion", "nombre"),
            Lookup("temporada_codigo", CflTemporada, "id_temporada", "id_temporada", "codigo"),
            Lookup("nombre_ruta", CflRuta, "id_ruta", "id_ruta", "nombre_ruta"),
        ),
    ),
    "cuentas-mayor": MaintainerConfig(
        title="Cuentas Mayores",
        model=CflCuentaMayor,
        required=("codigo", "glosa"),
        updatable=("codigo", "glosa"),
        order_by=("codigo",),
    ),
    "folios": MaintainerConfig(
        title="Folios",
        model=CflFolio,
        required=("id_centro_costo", "id_temporada", "folio_numero", "estado"),
        optional=(
            "periodo_desde",
            "periodo_hasta",
            "bloqueado",
            "fecha_cierre",
            "resultado_cuadratura",
            "resumen_cuadratura",
        ),
        updatable=(
            "id_centro_costo",
            "id_temporada",
            "folio_numero",
            "periodo_desde",
            "periodo_hasta",
            "estado",
            "bloqueado",
            "fecha_cierre",
            "resultado_cuadratura",
            "resumen_cuadratura",
        ),
        order_by=("-created_at", "-id_folio"),
        lookups=(
            Lookup("centro_costo_sap_codigo", CflCentroCosto, "id_centro_costo", "id_centro_costo", "sap_codigo"),
            Lookup("centro_costo_nombre", CflCentroCosto, "id_centro_costo", "id_centro_costo", "nombre"),
            Lookup("temporada_codigo", CflTemporada, "id_temporada", "id_temporada", "codigo"),
        ),
    ),
    "usuarios": MaintainerConfig(
        title="Usuarios",
        model=CflUsuario,
        required=("username", "email", "password_hash"),
        optional=("nombre", "apellido", "activo"),
        updatable=("username", "email", "password_hash", "nombre", "apellido", "activo", "ultimo_login"),
        order_by=("username",),
        soft_delete_column="activo",
        hidden=("password_hash",),
    ),
    "moviles": MaintainerConfig(
        title="Moviles",
        model=CflMovil,
        required=("id_empresa_transporte", "id_chofer", "id_camion"),
        optional=("activo",),
        updatable=("id_empresa_transporte", "id_chofer", "id_camion", "activo"),
        order_by=("-id_movil",),
        soft_delete_column="activo",
        lookups=(
            Lookup("empresa_razon_social", CflEmpresaTransporte, "id_empresa_transporte", "id_empresa", "razon_social"),
            Lookup("chofer_nombre", CflChofer, "id_chofer", "id_chofer", "sap_nombre"),
            Lookup("camion_patente", CflCamion, "id_camion", "id_camion", "sap_patente"),
        ),
    ),
}


def get_config(entity: str) -> MaintainerConfig:
    config = MAINTAINERS.get(entity)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Mantenedor no soportado: {entity}"
        )
    return config


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return False


def _coerce(config: MaintainerConfig, field: str, value: Any) -> Any:
    column = inspect(config.model).columns[field]
    if isinstance(column.type, Boolean):
        return to_bool(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        if isinstance(column.type, DateTime):
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value).strip())
        if isinstance(column.type, Date):
            return value if isinstance(value, date) else date.fromisoformat(str(value).strip()[:10])
        if isinstance(column.type, Numeric):
            return Decimal(str(value))
        if isinstance(column.type, Integer):
            return int(value)
    except (TypeError, ValueError, InvalidOperation):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Valor invalido para {field}"
        )
    return value.strip() if isinstance(value, str) else value


def collect_payload(
    config: MaintainerConfig, body: Mapping[str, Any], allowed: Tuple[str, ...]
) -> Dict[str, Any]:
    """Keep only ``allowed`` keys present in ``body``, coerced to their column types."""

    return {field: _coerce(config, field, body[field]) for field in allowed if field in body}


def _serialize(config: MaintainerConfig, obj: Base, extras: Mapping[str, Any]) -> Dict[str, Any]:
    row = obj.to_dict(exclude=config.hidden)
    row.update(extras)
    return row


def _select(config: MaintainerConfig):
    model = config.model
    stmt = select(model, *(getattr(lk.target, lk.column).label(lk.label) for lk in config.lookups))
    joined: Dict[Any, bool] = {}
    for lk in config.lookups:
        if lk.target in joined:
            continue
        joined[lk.target] = True
        stmt = stmt.outerjoin(
            lk.target, getattr(model, lk.local_key) == getattr(lk.target, lk.remote_key)
        )
    return stmt


def _order_clauses(config: MaintainerConfig) -> List[Any]:
    clauses = []
    for name in config.order_by:
        column = getattr(config.model, name.lstrip("-"))
        clauses.append(column.desc() if name.startswith("-") else column.asc())
    return clauses


def _row(config: MaintainerConfig, result_row) -> Dict[str, Any]:
    obj = result_row[0]
    extras = {lk.label: getattr(result_row, lk.label) for lk in config.lookups}
    return _serialize(config, obj, extras)


async def summary(session: AsyncSession) -> List[Dict[str, Any]]:
    data = []
    for key, config in MAINTAINERS.items():
        pk = getattr(config.model, config.id_column)
        total = (await session.execute(select(func.count(pk)))).scalar_one()
        data.append({"key": key, "title": config.title, "total": int(total)})
    return data


async def list_rows(
    session: AsyncSession, entity: str, page: int, page_size: int
) -> Tuple[List[Dict[str, Any]], int]:
    config = get_config(entity)
    pk = getattr(config.model, config.id_column)
    total = (await session.execute(select(func.count(pk)))).scalar_one()
    stmt = (
        _select(config)
        .order_by(*_order_clauses(config))
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    rows = (await session.execute(stmt)).all()
    return [_row(config, row) for row in rows], int(total)


async def get_row(session: AsyncSession, entity: str, row_id: int) -> Dict[str, Any]:
    config = get_config(entity)
    pk = getattr(config.model, config.id_column)
    row = (await session.execute(_select(config).where(pk == row_id))).first()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{config.title} no encontrado"
        )
    return _row(config, row)


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _stamp(config: MaintainerConfig, obj: Base, *names: str) -> None:
    columns = inspect(config.model).columns
    for name in names:
        if name in columns:
            setattr(obj, name, _now())


async def create_row(session: AsyncSession, entity: str, body: Mapping[str, Any]) -> int:
    """Insert one row and return its id; 400 lists the missing required fields."""

    config = get_config(entity)
    payload = collect_payload(config, body, config.required + config.optional)
    missing = [field for field in config.required if payload.get(field) in (None, "")]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Faltan campos requeridos", "missing_fields": missing},
        )

    obj = config.model(**payload)
    _stamp(config, obj, "created_at", "updated_at")
    session.add(obj)
    await session.flush()
    row_id = getattr(obj, config.id_column)
    logger.bind(entity=entity, id=row_id).info("maintainer_row_created")
    return row_id


async def _load_for_write(session: AsyncSession, config: MaintainerConfig, row_id: int) -> Base:
    obj = await session.get(
        config.model, row_id, with_for_update={"nowait": settings.DB_NOWAIT_LOCKS}
    )
    if obj is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{config.title} no encontrado"
        )
    if isinstance(obj, CflFolio) and obj.is_default:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="El folio 0 es reservado y no se puede modificar ni eliminar",
        )
    return obj


async def update_row(
    session: AsyncSession, entity: str, row_id: int, body: Mapping[str, Any]
) -> None:
    config = get_config(entity)
    payload = collect_payload(config, body, config.updatable)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No se recibieron campos para actualizar",
        )
    obj = await _load_for_write(session, config, row_id)
    if isinstance(obj, CflFolio) and is_default_folio_number(payload.get("folio_numero")):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="El numero de folio 0 es reservado",
        )
    for field, value in payload.items():
        setattr(obj, field, value)
    _stamp(config, obj, "updated_at")
    await session.flush()
    logger.bind(entity=entity, id=row_id, fields=sorted(payload)).info("maintainer_row_updated")


async def delete_row(session: AsyncSession, entity: str, row_id: int) -> None:
    """Soft delete through the configured flag column, else hard delete."""

    config = get_config(entity)
    obj = await _load_for_write(session, config, row_id)
    if config.soft_delete_column:
        setattr(obj, config.soft_delete_column, False)
        _stamp(config, obj, "updated_at")
    else:
        await session.delete(obj)
    await session.flush()
    logger.bind(entity=entity, id=row_id, soft=bool(config.soft_delete_column)).info(
        "maintainer_row_deleted"
    )
