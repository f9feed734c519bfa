"""Freight header lifecycle: status vocabulary, ingress normalization and derivation.

Everything here is pure. Raw status strings coming from the database or from
request payloads go through :func:`normalize_status` exactly once; the rest of
the code only ever handles :class:`FreightStatus` members.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from app.models.cfl_folio import DEFAULT_FOLIO_NUMBER


class FreightStatus(str, Enum):
    EN_REVISION = "EN_REVISION"
    COMPLETADO = "COMPLETADO"
    ASIGNADO_FOLIO = "ASIGNADO_FOLIO"
    FACTURADO = "FACTURADO"
    ANULADO = "ANULADO"


# Spellings written by the first generation of the dashboard.
LEGACY_STATUS_ALIASES: dict[str, FreightStatus] = {
    "COMPLETO": FreightStatus.COMPLETADO,
    "VALIDADO": FreightStatus.ASIGNADO_FOLIO,
    "CERRADO": FreightStatus.FACTURADO,
}

TERMINAL_STATUSES = frozenset({FreightStatus.FACTURADO, FreightStatus.ANULADO})


def normalize_status(raw: Any) -> Optional[FreightStatus]:
    """Parse a raw status value; unknown or blank values become ``None``."""

    if raw is None:
        return None
    if isinstance(raw, FreightStatus):
        return raw
    token = str(raw).strip().upper()
    if not token:
        return None
    if token in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[token]
    try:
        return FreightStatus(token)
    except ValueError:
        return None


def stored_spellings(status: FreightStatus) -> list[str]:
    """Upper-case values that may be stored for ``status``, legacy ones included."""

    spellings = [status.value]
    spellings.extend(alias for alias, target in LEGACY_STATUS_ALIASES.items() if target is status)
    return spellings


def is_default_folio_number(folio_number: Optional[str]) -> bool:
    return folio_number is not None and str(folio_number).strip() == DEFAULT_FOLIO_NUMBER


def has_real_folio(folio_number: Optional[str]) -> bool:
    """True when the header sits on a folio other than the reserved default."""

    return folio_number is not None and not is_default_folio_number(folio_number)


def status_for_folio_number(folio_number: Optional[str]) -> FreightStatus:
    """Status a header takes when (re)bound to a folio with this number."""

    if has_real_folio(folio_number):
        return FreightStatus.ASIGNADO_FOLIO
    return FreightStatus.COMPLETADO


def can_void(status: Optional[FreightStatus]) -> bool:
    return status is not FreightStatus.FACTURADO


@dataclass(frozen=True)
class LifecycleInputs:
    """Everything status derivation looks at.

    ``folio_number`` is the number of the folio the header references, or
    ``None`` when it references none.
    """

    requested_status: Optional[FreightStatus] = None
    folio_number: Optional[str] = None
    id_tipo_flete: Optional[int] = None
    id_centro_costo: Optional[int] = None
    id_detalle_viaje: Optional[int] = None
    id_movil: Optional[int] = None
    id_tarifa: Optional[int] = None
    line_count: int = 0

    @property
    def is_complete(self) -> bool:
        required = (
            self.id_tipo_flete,
            self.id_centro_costo,
            self.id_detalle_viaje,
            self.id_movil,
            self.id_tarifa,
        )
        return all(value is not None for value in required) and self.line_count > 0


def derive_lifecycle_status(inputs: LifecycleInputs) -> FreightStatus:
    """Compute the canonical status of a header.

    Precedence: explicit void, explicit invoice, real folio, completeness.
    """

    if inputs.requested_status is FreightStatus.ANULADO:
        return FreightStatus.ANULADO
    if inputs.requested_status is FreightStatus.FACTURADO:
        return FreightStatus.FACTURADO
    if has_real_folio(inputs.folio_number):
        return FreightStatus.ASIGNADO_FOLIO
    if inputs.is_complete:
        return FreightStatus.COMPLETADO
    return FreightStatus.EN_REVISION
