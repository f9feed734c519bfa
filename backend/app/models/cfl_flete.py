"""Freight header, freight lines and the SAP delivery link."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Time,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, BigIntId


class CflCabeceraFlete(Base):
    """Freight header (``cfl_cabecera_flete``).

    Headers are never deleted; voiding moves ``estado`` to ``ANULADO``.
    ``id_folio`` is either NULL or points at a folio (possibly the default
    folio numbered ``"0"`` for the header's season and cost center).
    """

    __tablename__ = "cfl_cabecera_flete"

    id_cabecera_flete: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_detalle_viaje: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_detalle_viaje.id_detalle_viaje")
    )
    id_folio: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_folio.id_folio"), index=True
    )
    sap_numero_entrega_sugerido: Mapped[Optional[str]] = mapped_column(String(20))
    sap_codigo_tipo_flete_sugerido: Mapped[Optional[str]] = mapped_column(String(4))
    sap_centro_costo_sugerido: Mapped[Optional[str]] = mapped_column(String(10))
    sap_cuenta_mayor_sugerida: Mapped[Optional[str]] = mapped_column(String(10))
    cuenta_mayor_final: Mapped[Optional[str]] = mapped_column(String(10))
    tipo_movimiento: Mapped[str] = mapped_column(String(4), nullable=False, default="PUSH")
    estado: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    fecha_salida: Mapped[date] = mapped_column(Date, nullable=False)
    hora_salida: Mapped[time] = mapped_column(Time, nullable=False)
    monto_aplicado: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    id_movil: Mapped[Optional[int]] = mapped_column(BigIntId, ForeignKey("cfl_movil.id_movil"))
    id_tarifa: Mapped[Optional[int]] = mapped_column(BigIntId, ForeignKey("cfl_tarifa.id_tarifa"))
    observaciones: Mapped[Optional[str]] = mapped_column(String(200))
    id_usuario_creador: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_usuario.id_usuario")
    )
    id_tipo_flete: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_tipo_flete.id_tipo_flete")
    )
    id_centro_costo_final: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_centro_costo.id_centro_costo"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    detalles: Mapped[List["CflDetalleFlete"]] = relationship(
        back_populates="cabecera",
        cascade="all, delete-orphan",
        order_by="CflDetalleFlete.id_detalle_flete",
    )
    sap_link: Mapped[Optional["CflFleteSapEntrega"]] = relationship(
        back_populates="cabecera", uselist=False
    )


class CflDetalleFlete(Base):
    """Freight line; replaced wholesale whenever the header is updated."""

    __tablename__ = "cfl_detalle_flete"

    id_detalle_flete: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_cabecera_flete: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("cfl_cabecera_flete.id_cabecera_flete", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    id_especie: Mapped[Optional[int]] = mapped_column(
        BigIntId, ForeignKey("cfl_especie.id_especie")
    )
    material: Mapped[Optional[str]] = mapped_column(String(50))
    descripcion: Mapped[Optional[str]] = mapped_column(String(100))
    cantidad: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    unidad: Mapped[Optional[str]] = mapped_column(String(3))
    peso: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    cabecera: Mapped["CflCabeceraFlete"] = relationship(back_populates="detalles")


class CflFleteSapEntrega(Base):
    """Links a header to the SAP delivery it came from; a delivery backs one header."""

    __tablename__ = "cfl_flete_sap_entrega"

    id_flete_sap_entrega: Mapped[int] = mapped_column(
        BigIntId, primary_key=True, autoincrement=True
    )
    id_cabecera_flete: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_cabecera_flete.id_cabecera_flete"), nullable=False, index=True
    )
    id_sap_entrega: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_sap_entrega.id_sap_entrega"), nullable=False, unique=True
    )
    origen_datos: Mapped[str] = mapped_column(String(10), nullable=False, default="SAP")
    tipo_relacion: Mapped[str] = mapped_column(String(20), nullable=False, default="PRINCIPAL")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    cabecera: Mapped["CflCabeceraFlete"] = relationship(back_populates="sap_link")
