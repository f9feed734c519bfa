from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import func, select

from app.models import CflCabeceraFlete, CflDetalleFlete, CflFleteSapEntrega, CflMovil
from app.schemas.flete import FleteCabeceraPayload, FleteUpsertPayload
from app.services import freight_builder
from factories import add_delivery, add_folio, add_header, seed_catalog


def _payload(ids, with_vehicle=True, lines=2, **cabecera):
    values = {
        "id_tipo_flete": ids["id_tipo_flete"],
        "id_centro_costo_final": ids["cc1"],
        "id_detalle_viaje": ids["id_detalle_viaje"],
        "id_tarifa": ids["id_tarifa"],
        "fecha_salida": "2025-03-12",
        "hora_salida": "06:45",
    }
    if with_vehicle:
        values.update(
            id_empresa_transporte=ids["id_empresa"],
            id_chofer=ids["id_chofer"],
            id_camion=ids["id_camion"],
        )
    values.update(cabecera)
    detalles = [
        {"material": f"MAT{n}", "cantidad": "12.5", "unidad": "kg", "id_especie": ids["id_especie"]}
        for n in range(lines)
    ]
    return FleteUpsertPayload.model_validate({"cabecera": values, "detalles": detalles})


def test_missing_required_fields_use_readable_messages():
    with pytest.raises(ValidationError) as ctx:
        FleteCabeceraPayload.model_validate({"fecha_salida": "12/03/2025", "hora_salida": "06:45"})
    messages = " ".join(err["msg"] for err in ctx.value.errors())
    assert "Falta id_tipo_flete" in messages
    assert "Falta id_centro_costo_final" in messages
    assert "Falta fecha_salida (YYYY-MM-DD)" in messages


def test_movement_type_synonyms_and_blank_references():
    cabecera = FleteCabeceraPayload.model_validate(
        {
            "id_tipo_flete": "3",
            "id_centro_costo_final": 1,
            "fecha_salida": "2025-03-12",
            "hora_salida": "06:45:10",
            "tipo_movimiento": " retorno ",
            "id_movil": 0,
            "id_tarifa": "",
            "estado": "completo",
        }
    )
    assert cabecera.tipo_movimiento == "PULL"
    assert cabecera.id_movil is None
    assert cabecera.id_tarifa is None
    assert cabecera.estado.value == "COMPLETADO"


@pytest.mark.anyio
async def test_manual_create_registers_movil_and_completes(session):
    ids = await seed_catalog(session)

    result = await freight_builder.create_manual(session, _payload(ids), user_id=None)
    await session.commit()

    assert result["estado"] == "COMPLETADO"
    assert result["detalles"] == 2
    movil = await session.get(CflMovil, result["id_movil"])
    assert (movil.id_empresa_transporte, movil.id_chofer, movil.id_camion) == (
        ids["id_empresa"],
        ids["id_chofer"],
        ids["id_camion"],
    )


@pytest.mark.anyio
async def test_existing_movil_is_reused(session):
    ids = await seed_catalog(session)
    first = await freight_builder.create_manual(session, _payload(ids))
    second = await freight_builder.create_manual(session, _payload(ids))
    await session.commit()

    assert first["id_movil"] == second["id_movil"]
    assert await session.scalar(select(func.count(CflMovil.id_movil))) == 1


@pytest.mark.anyio
async def test_incomplete_vehicle_leaves_header_in_review(session):
    ids = await seed_catalog(session)
    result = await freight_builder.create_manual(
        session, _payload(ids, with_vehicle=False, id_empresa_transporte=ids["id_empresa"])
    )
    assert result["id_movil"] is None
    assert result["estado"] == "EN_REVISION"


@pytest.mark.anyio
async def test_unknown_folio_reference_is_404(session):
    ids = await seed_catalog(session)
    with pytest.raises(HTTPException) as ctx:
        await freight_builder.create_manual(session, _payload(ids, id_folio=999))
    assert ctx.value.status_code == 404


@pytest.mark.anyio
async def test_manual_create_on_real_folio_is_assigned(session):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc1"], "4")
    result = await freight_builder.create_manual(session, _payload(ids, id_folio=folio.id_folio))
    assert result["estado"] == "ASIGNADO_FOLIO"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"bloqueado": True, "estado": "CERRADO"}, "El folio esta bloqueado"),
        ({"estado": "CERRADO"}, "El folio no esta abierto (estado CERRADO)"),
    ],
)
async def test_manual_create_rejects_unavailable_folio(session_factory, overrides, message):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        folio = await add_folio(db, ids["id_temporada"], ids["cc1"], "5", **overrides)

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await freight_builder.create_manual(db, _payload(ids, id_folio=folio.id_folio))
        await db.rollback()
    assert ctx.value.status_code == 409
    assert ctx.value.detail == message

    async with session_factory() as db:
        assert await db.scalar(select(func.count(CflCabeceraFlete.id_cabecera_flete))) == 0


@pytest.mark.anyio
async def test_manual_create_rejects_folio_of_other_cost_center(session):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc2"], "5")

    with pytest.raises(HTTPException) as ctx:
        await freight_builder.create_manual(session, _payload(ids, id_folio=folio.id_folio))
    assert ctx.value.status_code == 422
    assert ctx.value.detail == freight_builder.FOLIO_OTHER_COST_CENTER


@pytest.mark.anyio
async def test_manual_create_on_closed_default_folio_completes(session):
    ids = await seed_catalog(session)
    default = await add_folio(session, ids["id_temporada"], ids["cc1"], "0", estado="CERRADO")

    result = await freight_builder.create_manual(session, _payload(ids, id_folio=default.id_folio))
    assert result["estado"] == "COMPLETADO"


@pytest.mark.anyio
async def test_create_from_candidate_links_and_fills_suggestions(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        entrega = await add_delivery(db, "8000100", source_system="PRD-LONG-SYSTEM")
        id_sap_entrega = entrega.id_sap_entrega

    async with session_factory() as db:
        result = await freight_builder.create_from_candidate(db, id_sap_entrega, _payload(ids))
        await db.commit()

    assert result["id_sap_entrega"] == id_sap_entrega
    async with session_factory() as db:
        header = await db.get(CflCabeceraFlete, result["id_cabecera_flete"])
        assert header.sap_numero_entrega_sugerido == "8000100"
        assert header.sap_codigo_tipo_flete_sugerido == "ZF01"
        assert header.sap_centro_costo_sugerido == "CC100"
        assert header.cuenta_mayor_final == "5101001"
        link = await db.scalar(
            select(CflFleteSapEntrega).where(CflFleteSapEntrega.id_sap_entrega == id_sap_entrega)
        )
        assert link.id_cabecera_flete == header.id_cabecera_flete
        assert link.origen_datos == "PRD-LONG-S"
        assert link.tipo_relacion == "PRINCIPAL"

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await freight_builder.create_from_candidate(db, id_sap_entrega, _payload(ids))
        assert ctx.value.status_code == 409
        assert ctx.value.detail == freight_builder.DELIVERY_ALREADY_LINKED


@pytest.mark.anyio
async def test_create_from_unknown_delivery_is_404(session):
    ids = await seed_catalog(session)
    with pytest.raises(HTTPException) as ctx:
        await freight_builder.create_from_candidate(session, 12345, _payload(ids))
    assert ctx.value.status_code == 404


@pytest.mark.anyio
async def test_ingest_rejects_candidate_with_reason(session):
    await seed_catalog(session)
    entrega = await add_delivery(session, "8000200", sap_hora_salida=None)

    with pytest.raises(HTTPException) as ctx:
        await freight_builder.ingest_candidate(session, entrega.id_sap_entrega)

    assert ctx.value.status_code == 422
    assert ctx.value.detail == "Falta sap_hora_salida"


@pytest.mark.anyio
async def test_ingest_copies_positions_into_lines(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        entrega = await add_delivery(
            db,
            "8000300",
            positions=[
                dict(sap_posicion="000010", sap_material="CER-01", sap_denominacion_material="Cereza",
                     sap_cantidad_entregada=Decimal("10.456"), sap_unidad_peso="KG"),
                dict(sap_posicion="000020", sap_material="CER-02", sap_cantidad_entregada=None),
            ],
        )
        id_sap_entrega = entrega.id_sap_entrega

    async with session_factory() as db:
        result = await freight_builder.ingest_candidate(db, id_sap_entrega)
        await db.commit()

    # Ingested headers carry no rate or vehicle yet.
    assert result["estado"] == "EN_REVISION"
    assert result["detalles"] == 2
    async with session_factory() as db:
        detail = await freight_builder.get_header(db, result["id_cabecera_flete"])
    cabecera = detail["cabecera"]
    assert cabecera["id_tipo_flete"] == ids["id_tipo_flete"]
    assert cabecera["id_centro_costo_final"] == ids["cc1"]
    assert cabecera["id_sap_entrega"] == id_sap_entrega
    assert str(cabecera["hora_salida"]) == "06:45:00"
    lines = detail["detalles"]
    assert [line["material"] for line in lines] == ["CER-01", "CER-02"]
    assert lines[0]["cantidad"] == Decimal("10.46")
    assert lines[1]["cantidad"] is None


@pytest.mark.anyio
async def test_update_replaces_lines_and_keeps_folio(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        folio = await add_folio(db, ids["id_temporada"], ids["cc1"], "9")
        header = await add_header(db, ids, estado="ASIGNADO_FOLIO", lines=3, id_folio=folio.id_folio)
        header_id, folio_id = header.id_cabecera_flete, folio.id_folio

    async with session_factory() as db:
        result = await freight_builder.update_header(
            db, header_id, _payload(ids, lines=1, observaciones="  reprogramado  ")
        )
        await db.commit()

    assert result["estado"] == "ASIGNADO_FOLIO"
    assert result["detalles"] == 1
    assert result["id_movil"] is not None
    async with session_factory() as db:
        header = await db.get(CflCabeceraFlete, header_id)
        assert header.id_folio == folio_id
        assert header.observaciones == "reprogramado"
        count = await db.scalar(
            select(func.count(CflDetalleFlete.id_detalle_flete)).where(
                CflDetalleFlete.id_cabecera_flete == header_id
            )
        )
        assert count == 1


@pytest.mark.anyio
@pytest.mark.parametrize("estado", ["FACTURADO", "ANULADO"])
async def test_terminal_headers_cannot_be_updated(session_factory, estado):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        header = await add_header(db, ids, estado=estado)
        header_id = header.id_cabecera_flete

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await freight_builder.update_header(db, header_id, _payload(ids))

    assert ctx.value.status_code == 409
    assert ctx.value.detail == f"No se puede modificar un flete en estado {estado}"


@pytest.mark.anyio
async def test_get_unknown_header_is_404(session):
    with pytest.raises(HTTPException) as ctx:
        await freight_builder.get_header(session, 42)
    assert ctx.value.status_code == 404
