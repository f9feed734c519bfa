"""Folio (accounting period bucket) ORM model."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BigIntId

DEFAULT_FOLIO_NUMBER = "0"
FOLIO_ESTADO_ABIERTO = "ABIERTO"


class CflFolio(Base):
    """Represents ``cfl_folio``; numbered per (season, cost center).

    The unique constraint on (season, cost center, number) backs up the
    locked max+1 allocation when two allocators race.
    """

    __tablename__ = "cfl_folio"
    __table_args__ = (
        UniqueConstraint(
            "id_temporada",
            "id_centro_costo",
            "folio_numero",
            name="uq_cfl_folio_temporada_cc_numero",
        ),
    )

    id_folio: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    id_centro_costo: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_centro_costo.id_centro_costo"), nullable=False
    )
    id_temporada: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_temporada.id_temporada"), nullable=False
    )
    folio_numero: Mapped[str] = mapped_column(String(30), nullable=False)
    periodo_desde: Mapped[Optional[date]] = mapped_column(Date)
    periodo_hasta: Mapped[Optional[date]] = mapped_column(Date)
    estado: Mapped[str] = mapped_column(String(20), nullable=False, default=FOLIO_ESTADO_ABIERTO)
    bloqueado: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fecha_cierre: Mapped[Optional[datetime]] = mapped_column(DateTime)
    resultado_cuadratura: Mapped[Optional[str]] = mapped_column(String(20))
    resumen_cuadratura: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    @property
    def is_default(self) -> bool:
        return (self.folio_numero or "").strip() == DEFAULT_FOLIO_NUMBER
