"""Pydantic schemas for folio assignment operations."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator


def _dedupe(ids: List[int]) -> List[int]:
    seen: set[int] = set()
    ordered: List[int] = []
    for value in ids:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class AsignarNuevoFolioPayload(BaseModel):
    ids_cabecera_flete: List[PositiveInt] = Field(min_length=1)

    @field_validator("ids_cabecera_flete")
    @classmethod
    def _unique_ids(cls, value: List[int]) -> List[int]:
        return _dedupe(value)


class AsignarFolioPayload(AsignarNuevoFolioPayload):
    id_folio: PositiveInt


class MovimientoSapPayload(BaseModel):
    """Identifies one freight movement by the SAP delivery it came from."""

    sap_numero_entrega: str = Field(min_length=1, max_length=20)
    source_system: Optional[str] = Field(default=None, max_length=50)

    @field_validator("sap_numero_entrega", "source_system", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip() or None
        return value

