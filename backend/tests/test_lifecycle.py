import pytest

from app.services.lifecycle import (
    FreightStatus,
    LifecycleInputs,
    can_void,
    derive_lifecycle_status,
    normalize_status,
    status_for_folio_number,
    stored_spellings,
)

COMPLETE = dict(
    id_tipo_flete=1,
    id_centro_costo=2,
    id_detalle_viaje=3,
    id_movil=4,
    id_tarifa=5,
    line_count=1,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("COMPLETO", FreightStatus.COMPLETADO),
        (" validado ", FreightStatus.ASIGNADO_FOLIO),
        ("Cerrado", FreightStatus.FACTURADO),
        ("en_revision", FreightStatus.EN_REVISION),
        ("ANULADO", FreightStatus.ANULADO),
        ("", None),
        ("DESCONOCIDO", None),
        (None, None),
    ],
)
def test_normalize_status_maps_legacy_spellings(raw, expected):
    assert normalize_status(raw) is expected


def test_stored_spellings_include_legacy_aliases():
    assert stored_spellings(FreightStatus.COMPLETADO) == ["COMPLETADO", "COMPLETO"]
    assert stored_spellings(FreightStatus.EN_REVISION) == ["EN_REVISION"]


def test_void_and_invoice_dominate_folio_and_completeness():
    for requested in (FreightStatus.ANULADO, FreightStatus.FACTURADO):
        inputs = LifecycleInputs(requested_status=requested, folio_number="12", **COMPLETE)
        assert derive_lifecycle_status(inputs) is requested


def test_real_folio_beats_completeness():
    inputs = LifecycleInputs(folio_number="3")
    assert derive_lifecycle_status(inputs) is FreightStatus.ASIGNADO_FOLIO


def test_default_folio_does_not_count_as_assigned():
    assert derive_lifecycle_status(LifecycleInputs(folio_number="0", **COMPLETE)) is FreightStatus.COMPLETADO
    assert derive_lifecycle_status(LifecycleInputs(folio_number="0")) is FreightStatus.EN_REVISION


@pytest.mark.parametrize("missing", ["id_tipo_flete", "id_centro_costo", "id_detalle_viaje", "id_movil", "id_tarifa"])
def test_missing_reference_keeps_header_in_review(missing):
    values = dict(COMPLETE, **{missing: None})
    assert derive_lifecycle_status(LifecycleInputs(**values)) is FreightStatus.EN_REVISION


def test_header_without_lines_is_not_complete():
    values = dict(COMPLETE, line_count=0)
    assert derive_lifecycle_status(LifecycleInputs(**values)) is FreightStatus.EN_REVISION


def test_requested_status_below_terminal_is_recomputed():
    inputs = LifecycleInputs(requested_status=FreightStatus.ASIGNADO_FOLIO, folio_number=None)
    assert derive_lifecycle_status(inputs) is FreightStatus.EN_REVISION


def test_derivation_is_deterministic():
    inputs = LifecycleInputs(folio_number="7", **COMPLETE)
    assert {derive_lifecycle_status(inputs) for _ in range(5)} == {FreightStatus.ASIGNADO_FOLIO}


def test_status_for_folio_number():
    assert status_for_folio_number("0") is FreightStatus.COMPLETADO
    assert status_for_folio_number(" 0 ") is FreightStatus.COMPLETADO
    assert status_for_folio_number("15") is FreightStatus.ASIGNADO_FOLIO


def test_only_invoiced_headers_cannot_be_voided():
    assert not can_void(FreightStatus.FACTURADO)
    assert can_void(FreightStatus.ASIGNADO_FOLIO)
    assert can_void(FreightStatus.ANULADO)
    assert can_void(None)
