"""Transport catalog tables and the vehicle assignment (``movil``) tuple."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BigIntId


class CflNodoLogistico(Base):
    __tablename__ = "cfl_nodo_logistico"

    id_nodo: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(100))
    comuna: Mapped[Optional[str]] = mapped_column(String(100))
    ciudad: Mapped[Optional[str]] = mapped_column(String(100))
    calle: Mapped[Optional[str]] = mapped_column(String(200))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflRuta(Base):
    __tablename__ = "cfl_ruta"

    id_ruta: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_origen_nodo: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_nodo_logistico.id_nodo"), nullable=False
    )
    id_destino_nodo: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_nodo_logistico.id_nodo"), nullable=False
    )
    nombre_ruta: Mapped[str] = mapped_column(String(150), nullable=False)
    distancia_km: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflTipoCamion(Base):
    __tablename__ = "cfl_tipo_camion"

    id_tipo_camion: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    categoria: Mapped[Optional[str]] = mapped_column(String(50))
    capacidad_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    requiere_temperatura: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    descripcion: Mapped[Optional[str]] = mapped_column(String(200))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflCamion(Base):
    __tablename__ = "cfl_camion"

    id_camion: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_tipo_camion: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_tipo_camion.id_tipo_camion"), nullable=False
    )
    sap_patente: Mapped[str] = mapped_column(String(20), nullable=False)
    sap_carro: Mapped[Optional[str]] = mapped_column(String(20))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflEmpresaTransporte(Base):
    __tablename__ = "cfl_empresa_transporte"

    id_empresa: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    sap_codigo: Mapped[Optional[str]] = mapped_column(String(20))
    rut: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    razon_social: Mapped[str] = mapped_column(String(150), nullable=False)
    nombre_rep: Mapped[Optional[str]] = mapped_column(String(100))
    correo: Mapped[Optional[str]] = mapped_column(String(150))
    telefono: Mapped[Optional[str]] = mapped_column(String(30))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflChofer(Base):
    __tablename__ = "cfl_chofer"

    id_chofer: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    sap_id_fiscal: Mapped[str] = mapped_column(String(20), nullable=False)
    sap_nombre: Mapped[str] = mapped_column(String(100), nullable=False)
    telefono: Mapped[Optional[str]] = mapped_column(String(30))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflTarifa(Base):
    __tablename__ = "cfl_tarifa"

    id_tarifa: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_tipo_camion: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_tipo_camion.id_tipo_camion"), nullable=False
    )
    id_temporada: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_temporada.id_temporada"), nullable=False
    )
    id_ruta: Mapped[int] = mapped_column(BigIntId, ForeignKey("cfl_ruta.id_ruta"), nullable=False)
    vigencia_desde: Mapped[date] = mapped_column(Date, nullable=False)
    vigencia_hasta: Mapped[Optional[date]] = mapped_column(Date)
    prioridad: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    regla: Mapped[Optional[str]] = mapped_column(String(50))
    moneda: Mapped[str] = mapped_column(String(3), nullable=False, default="CLP")
    monto_fijo: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflMovil(Base):
    """Vehicle assignment: one row per (carrier, driver, truck) combination."""

    __tablename__ = "cfl_movil"
    __table_args__ = (
        UniqueConstraint(
            "id_empresa_transporte",
            "id_chofer",
            "id_camion",
            name="uq_cfl_movil_empresa_chofer_camion",
        ),
    )

    id_movil: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_empresa_transporte: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_empresa_transporte.id_empresa"), nullable=False
    )
    id_chofer: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_chofer.id_chofer"), nullable=False
    )
    id_camion: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_camion.id_camion"), nullable=False
    )
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
