"""Reference catalog tables: seasons, cost centers, freight types and friends."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BigIntId


class CflTemporada(Base):
    """Season (``cfl_temporada``); folios are numbered per season."""

    __tablename__ = "cfl_temporada"

    id_temporada: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    codigo: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    fecha_inicio: Mapped[date] = mapped_column(Date, nullable=False)
    fecha_fin: Mapped[Optional[date]] = mapped_column(Date)
    activa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cerrada: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fecha_cierre: Mapped[Optional[datetime]] = mapped_column(DateTime)
    id_usuario_cierre: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_usuario.id_usuario")
    )
    observacion_cierre: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class CflCentroCosto(Base):
    """Cost center (``cfl_centro_costo``), matched to SAP by ``sap_codigo``."""

    __tablename__ = "cfl_centro_costo"

    id_centro_costo: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    sap_codigo: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflTipoFlete(Base):
    """Freight type (``cfl_tipo_flete``) with an optional default cost center."""

    __tablename__ = "cfl_tipo_flete"

    id_tipo_flete: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    sap_codigo: Mapped[str] = mapped_column(String(4), nullable=False, index=True)
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    id_centro_costo: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_centro_costo.id_centro_costo")
    )
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflDetalleViaje(Base):
    __tablename__ = "cfl_detalle_viaje"

    id_detalle_viaje: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    descripcion: Mapped[str] = mapped_column(String(100), nullable=False)
    observacion: Mapped[Optional[str]] = mapped_column(String(200))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflEspecie(Base):
    __tablename__ = "cfl_especie"

    id_especie: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    glosa: Mapped[str] = mapped_column(String(100), nullable=False)


class CflCuentaMayor(Base):
    """General ledger account (``cfl_cuenta_mayor``)."""

    __tablename__ = "cfl_cuenta_mayor"

    id_cuenta_mayor: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    codigo: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    glosa: Mapped[str] = mapped_column(String(100), nullable=False)
