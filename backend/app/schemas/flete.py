"""Pydantic schemas for freight header create/update payloads."""

from __future__ import annotations

import re
from datetime import date, time
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, condecimal, field_validator

from app.services.lifecycle import FreightStatus, normalize_status

TipoMovimiento = Literal["PUSH", "PULL"]

MOVEMENT_TYPE_SYNONYMS: dict[str, str] = {
    "PUSH": "PUSH",
    "IDA": "PUSH",
    "SALIDA": "PUSH",
    "DESPACHO": "PUSH",
    "OUTBOUND": "PUSH",
    "PULL": "PULL",
    "RETORNO": "PULL",
    "REGRESO": "PULL",
    "VUELTA": "PULL",
    "DEVOLUCION": "PULL",
    "RETURN": "PULL",
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


def normalize_tipo_movimiento(value: Any) -> Optional[str]:
    """Map display spellings onto PUSH/PULL; blank becomes ``None``."""

    if value is None:
        return None
    token = str(value).strip().upper()
    if not token:
        return None
    return MOVEMENT_TYPE_SYNONYMS.get(token, token)


def _optional_id(value: Any) -> Optional[int]:
    # Blank, zero and negative references mean "not set".
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValueError("debe ser un entero positivo")
    return parsed if parsed > 0 else None


def _trimmed(value: Any, max_length: int) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text[:max_length] or None


class FleteDetallePayload(BaseModel):
    id_especie: Optional[int] = None
    material: Optional[str] = None
    descripcion: Optional[str] = None
    cantidad: Optional[condecimal(max_digits=12, decimal_places=2)] = None
    unidad: Optional[str] = None
    peso: Optional[condecimal(max_digits=15, decimal_places=3)] = None

    @field_validator("id_especie", mode="before")
    @classmethod
    def _id_especie(cls, value: Any) -> Optional[int]:
        return _optional_id(value)

    @field_validator("material", mode="before")
    @classmethod
    def _material(cls, value: Any) -> Optional[str]:
        return _trimmed(value, 50)

    @field_validator("descripcion", mode="before")
    @classmethod
    def _descripcion(cls, value: Any) -> Optional[str]:
        return _trimmed(value, 100)

    @field_validator("unidad", mode="before")
    @classmethod
    def _unidad(cls, value: Any) -> Optional[str]:
        text = _trimmed(value, 3)
        return text.upper() if text else None

    @field_validator("cantidad", "peso", mode="before")
    @classmethod
    def _blank_decimal(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class FleteCabeceraPayload(BaseModel):
    """Header fields accepted on create and full update."""

    # Required; a missing value is reported by the field validators below.
    id_tipo_flete: int = Field(default=None, validate_default=True)
    id_centro_costo_final: int = Field(default=None, validate_default=True)
    tipo_movimiento: TipoMovimiento = "PUSH"
    fecha_salida: date = Field(default=None, validate_default=True)
    hora_salida: time = Field(default=None, validate_default=True)
    estado: Optional[FreightStatus] = None
    id_detalle_viaje: Optional[int] = None
    id_folio: Optional[int] = None
    id_movil: Optional[int] = None
    id_empresa_transporte: Optional[int] = None
    id_chofer: Optional[int] = None
    id_camion: Optional[int] = None
    id_tarifa: Optional[int] = None
    monto_aplicado: condecimal(max_digits=18, decimal_places=2) = Decimal("0")
    cuenta_mayor_final: Optional[str] = Field(default=None, max_length=10)
    sap_numero_entrega_sugerido: Optional[str] = Field(default=None, max_length=20)
    sap_codigo_tipo_flete_sugerido: Optional[str] = Field(default=None, max_length=4)
    sap_centro_costo_sugerido: Optional[str] = Field(default=None, max_length=10)
    sap_cuenta_mayor_sugerida: Optional[str] = Field(default=None, max_length=10)
    observaciones: Optional[str] = None

    @field_validator("id_tipo_flete", mode="before")
    @classmethod
    def _require_tipo_flete(cls, value: Any) -> int:
        parsed = _optional_id(value)
        if parsed is None:
            raise ValueError("Falta id_tipo_flete")
        return parsed

    @field_validator("id_centro_costo_final", mode="before")
    @classmethod
    def _require_centro_costo(cls, value: Any) -> int:
        parsed = _optional_id(value)
        if parsed is None:
            raise ValueError("Falta id_centro_costo_final")
        return parsed

    @field_validator(
        "id_detalle_viaje",
        "id_folio",
        "id_movil",
        "id_empresa_transporte",
        "id_chofer",
        "id_camion",
        "id_tarifa",
        mode="before",
    )
    @classmethod
    def _optional_reference(cls, value: Any) -> Optional[int]:
        return _optional_id(value)

    @field_validator("tipo_movimiento", mode="before")
    @classmethod
    def _tipo_movimiento(cls, value: Any) -> str:
        normalized = normalize_tipo_movimiento(value) or "PUSH"
        if normalized not in ("PUSH", "PULL"):
            raise ValueError("tipo_movimiento invalido (PUSH/PULL)")
        return normalized

    @field_validator("fecha_salida", mode="before")
    @classmethod
    def _fecha_salida(cls, value: Any) -> Any:
        if isinstance(value, date):
            return value
        if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
            raise ValueError("Falta fecha_salida (YYYY-MM-DD)")
        return value.strip()

    @field_validator("hora_salida", mode="before")
    @classmethod
    def _hora_salida(cls, value: Any) -> Any:
        if isinstance(value, time):
            return value
        if not isinstance(value, str) or not _TIME_RE.match(value.strip()):
            raise ValueError("Falta hora_salida (HH:MM[:SS])")
        return value.strip()

    @field_validator(
        "cuenta_mayor_final",
        "sap_numero_entrega_sugerido",
        "sap_codigo_tipo_flete_sugerido",
        "sap_centro_costo_sugerido",
        "sap_cuenta_mayor_sugerida",
        mode="before",
    )
    @classmethod
    def _strip_optional(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("estado", mode="before")
    @classmethod
    def _estado(cls, value: Any) -> Optional[FreightStatus]:
        return normalize_status(value)

    @field_validator("observaciones", mode="before")
    @classmethod
    def _observaciones(cls, value: Any) -> Optional[str]:
        return _trimmed(value, 200)

    @field_validator("monto_aplicado", mode="before")
    @classmethod
    def _monto(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return Decimal("0")
        return value


class FleteUpsertPayload(BaseModel):
    """``{cabecera, detalles}`` body used by manual create, create-from-candidate and update."""

    cabecera: FleteCabeceraPayload = Field(default_factory=dict, validate_default=True)
    detalles: List[FleteDetallePayload] = Field(default_factory=list)
