from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from app.models import CflCentroCosto, CflChofer, CflEspecie, CflFolio
from app.services import maintainers
from factories import add_folio, seed_catalog


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), (0, False), (2, True), (" Si ", True), ("true", True), ("no", False), (None, False)],
)
def test_to_bool_accepts_common_spellings(value, expected):
    assert maintainers.to_bool(value) is expected


def test_collect_payload_coerces_by_column_type():
    config = maintainers.get_config("tarifas")
    payload = maintainers.collect_payload(
        config,
        {
            "id_ruta": "7",
            "vigencia_desde": "2025-01-01T00:00:00",
            "vigencia_hasta": "",
            "monto_fijo": "125000.50",
            "activo": "1",
            "moneda": " CLP ",
            "ignored": "x",
        },
        config.updatable,
    )
    assert payload == {
        "id_ruta": 7,
        "vigencia_desde": date(2025, 1, 1),
        "vigencia_hasta": None,
        "monto_fijo": Decimal("125000.50"),
        "activo": True,
        "moneda": "CLP",
    }


def test_invalid_value_is_400():
    config = maintainers.get_config("camiones")
    with pytest.raises(HTTPException) as ctx:
        maintainers.collect_payload(config, {"id_tipo_camion": "abc"}, config.updatable)
    assert ctx.value.status_code == 400
    assert ctx.value.detail == "Valor invalido para id_tipo_camion"


def test_unknown_entity_is_404():
    with pytest.raises(HTTPException) as ctx:
        maintainers.get_config("planetas")
    assert ctx.value.status_code == 404
    assert ctx.value.detail == "Mantenedor no soportado: planetas"


@pytest.mark.anyio
async def test_create_reports_missing_fields(session):
    with pytest.raises(HTTPException) as ctx:
        await maintainers.create_row(session, "choferes", {"sap_nombre": "Ana Rojas", "sap_id_fiscal": " "})
    assert ctx.value.status_code == 400
    assert ctx.value.detail == {"error": "Faltan campos requeridos", "missing_fields": ["sap_id_fiscal"]}


@pytest.mark.anyio
async def test_create_and_update_coerce_booleans(session):
    row_id = await maintainers.create_row(
        session,
        "choferes",
        {"sap_id_fiscal": "15111222-3", "sap_nombre": "Ana Rojas", "activo": "si"},
    )
    await session.commit()
    chofer = await session.get(CflChofer, row_id)
    assert chofer.activo is True

    await maintainers.update_row(session, "choferes", row_id, {"activo": "0", "telefono": "+56 9 1111"})
    await session.commit()
    row = await maintainers.get_row(session, "choferes", row_id)
    assert row["activo"] is False
    assert row["telefono"] == "+56 9 1111"


@pytest.mark.anyio
async def test_update_without_known_fields_is_400(session):
    ids = await seed_catalog(session)
    with pytest.raises(HTTPException) as ctx:
        await maintainers.update_row(session, "centros-costo", ids["cc1"], {"foo": "bar"})
    assert ctx.value.status_code == 400


@pytest.mark.anyio
async def test_delete_is_soft_when_entity_has_flag(session):
    ids = await seed_catalog(session)
    await maintainers.delete_row(session, "centros-costo", ids["cc2"])
    await session.commit()

    centro = await session.get(CflCentroCosto, ids["cc2"])
    assert centro is not None
    assert centro.activo is False


@pytest.mark.anyio
async def test_delete_is_hard_without_flag(session):
    ids = await seed_catalog(session)
    extra = await maintainers.create_row(session, "especies", {"glosa": "Ciruelas"})
    await session.commit()

    await maintainers.delete_row(session, "especies", extra)
    await session.commit()

    assert await session.get(CflEspecie, extra) is None
    assert await session.get(CflEspecie, ids["id_especie"]) is not None


@pytest.mark.anyio
async def test_default_folio_cannot_be_changed_or_deleted(session):
    ids = await seed_catalog(session)
    default = await add_folio(session, ids["id_temporada"], ids["cc1"], "0")

    for call in (
        maintainers.update_row(session, "folios", default.id_folio, {"estado": "CERRADO"}),
        maintainers.delete_row(session, "folios", default.id_folio),
    ):
        with pytest.raises(HTTPException) as ctx:
            await call
        assert ctx.value.status_code == 409


@pytest.mark.anyio
async def test_folio_cannot_be_renumbered_to_zero(session):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc1"], "4")

    with pytest.raises(HTTPException) as ctx:
        await maintainers.update_row(session, "folios", folio.id_folio, {"folio_numero": " 0 "})
    assert ctx.value.status_code == 409

    fresh = await session.get(CflFolio, folio.id_folio)
    assert fresh.folio_numero == "4"


@pytest.mark.anyio
async def test_password_hash_never_listed(session):
    row_id = await maintainers.create_row(
        session,
        "usuarios",
        {"username": "ops", "email": "ops@cfl.test", "password_hash": "$2b$12$abc"},
    )
    await session.commit()

    row = await maintainers.get_row(session, "usuarios", row_id)
    assert row["username"] == "ops"
    assert "password_hash" not in row
    assert row["created_at"] is not None


@pytest.mark.anyio
async def test_list_includes_lookup_labels(session):
    await seed_catalog(session)
    rows, total = await maintainers.list_rows(session, "rutas", 1, 10)
    assert total == 1
    assert rows[0]["origen_nombre"] == "Planta Curico"
    assert rows[0]["destino_nombre"] == "Puerto Valparaiso"

    rows, _ = await maintainers.list_rows(session, "tipos-flete", 1, 10)
    assert rows[0]["centro_costo_sap_codigo"] == "CC100"


@pytest.mark.anyio
async def test_get_missing_row_is_404(session):
    with pytest.raises(HTTPException) as ctx:
        await maintainers.get_row(session, "camiones", 404)
    assert ctx.value.status_code == 404
    assert ctx.value.detail == "Camiones no encontrado"


@pytest.mark.anyio
async def test_summary_counts_every_entity(session):
    await seed_catalog(session)
    totals = {item["key"]: item["total"] for item in await maintainers.summary(session)}
    assert set(totals) == set(maintainers.MAINTAINERS)
    assert totals["centros-costo"] == 2
    assert totals["folios"] == 0
