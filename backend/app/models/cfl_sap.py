"""SAP staging tables, loaded by the extraction job and read-only here."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Index,
    Numeric,
    String,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BigIntId


class CflSapEntrega(Base):
    """One SAP delivery (``cfl_sap_entrega``) keyed by source system and number."""

    __tablename__ = "cfl_sap_entrega"
    __table_args__ = (
        UniqueConstraint(
            "source_system", "sap_numero_entrega", name="uq_cfl_sap_entrega_source_numero"
        ),
    )

    id_sap_entrega: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    sap_numero_entrega: Mapped[str] = mapped_column(String(20), nullable=False)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class CflSapLikpCurrent(Base):
    """Current LIKP (delivery header) snapshot per delivery.

    Backed by the ``vw_cfl_sap_likp_current`` view in production; the schema
    is declared here so queries can be composed and tests can materialize it
    as a plain table.
    """

    __tablename__ = "vw_cfl_sap_likp_current"
    __table_args__ = {"info": {"is_view": True}}

    source_system: Mapped[str] = mapped_column(String(50), primary_key=True)
    sap_numero_entrega: Mapped[str] = mapped_column(String(20), primary_key=True)
    sap_referencia: Mapped[Optional[str]] = mapped_column(String(40))
    sap_guia_remision: Mapped[Optional[str]] = mapped_column(String(40))
    sap_codigo_tipo_flete: Mapped[Optional[str]] = mapped_column(String(4))
    sap_centro_costo: Mapped[Optional[str]] = mapped_column(String(10))
    sap_cuenta_mayor: Mapped[Optional[str]] = mapped_column(String(10))
    sap_fecha_salida: Mapped[Optional[date]] = mapped_column(Date)
    sap_hora_salida: Mapped[Optional[time]] = mapped_column(Time)
    sap_empresa_transporte: Mapped[Optional[str]] = mapped_column(String(100))
    sap_nombre_chofer: Mapped[Optional[str]] = mapped_column(String(100))
    sap_patente: Mapped[Optional[str]] = mapped_column(String(20))
    sap_carro: Mapped[Optional[str]] = mapped_column(String(20))
    sap_peso_total: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))
    sap_peso_neto: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))


class CflSapLipsRaw(Base):
    """Raw LIPS (delivery position) rows; one position may appear many times."""

    __tablename__ = "cfl_sap_lips_raw"
    __table_args__ = (
        Index(
            "ix_cfl_sap_lips_raw_entrega_posicion",
            "source_system",
            "sap_numero_entrega",
            "sap_posicion",
        ),
    )

    raw_id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    sap_numero_entrega: Mapped[str] = mapped_column(String(20), nullable=False)
    sap_posicion: Mapped[str] = mapped_column(String(6), nullable=False)
    sap_posicion_superior: Mapped[Optional[str]] = mapped_column(String(6))
    sap_material: Mapped[Optional[str]] = mapped_column(String(50))
    sap_denominacion_material: Mapped[Optional[str]] = mapped_column(String(100))
    sap_cantidad_entregada: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))
    sap_unidad_peso: Mapped[Optional[str]] = mapped_column(String(3))
    sap_centro: Mapped[Optional[str]] = mapped_column(String(4))
    sap_almacen: Mapped[Optional[str]] = mapped_column(String(4))
    sap_lote: Mapped[Optional[str]] = mapped_column(String(20))
    row_status: Mapped[str] = mapped_column(String(10), nullable=False, default="ACTIVE")
    extracted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
