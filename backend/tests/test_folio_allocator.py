import asyncio
from datetime import date

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.db import unit_of_work
from app.models import Base, CflCabeceraFlete, CflFolio
from app.services import folio_allocator
from app.services.folio_allocator import next_folio_number
from factories import add_delivery, add_folio, add_header, link_delivery, seed_catalog


@pytest.mark.parametrize(
    "existing, expected",
    [
        ([], "1"),
        (["0"], "1"),
        (["0", "1", "2"], "3"),
        (["0", "9", "10", "A-7"], "11"),
        ([None, " 4 ", "X"], "5"),
    ],
)
def test_next_folio_number_ignores_non_numeric(existing, expected):
    assert next_folio_number(existing) == expected


async def _reload(session_factory, model, pk):
    async with session_factory() as db:
        return await db.get(model, pk)


async def _folio_count(session_factory):
    async with session_factory() as db:
        return await db.scalar(select(func.count(CflFolio.id_folio)))


@pytest.mark.anyio
async def test_assign_existing_folio_accepts_headers_already_on_it(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        folio = await add_folio(db, ids["id_temporada"], ids["cc1"], "3")
        completed = await add_header(db, ids, estado="COMPLETADO")
        already = await add_header(db, ids, estado="ASIGNADO_FOLIO", id_folio=folio.id_folio)
        folio_id = folio.id_folio
        header_ids = [completed.id_cabecera_flete, already.id_cabecera_flete]

    async with session_factory() as db:
        result = await folio_allocator.assign_existing_folio(db, folio_id, header_ids)
        await db.commit()

    assert result == {
        "id_folio": folio_id,
        "folio_numero": "3",
        "estado": "ASIGNADO_FOLIO",
        "updated": 2,
    }
    for header_id in header_ids:
        header = await _reload(session_factory, CflCabeceraFlete, header_id)
        assert header.id_folio == folio_id
        assert header.estado == "ASIGNADO_FOLIO"


@pytest.mark.anyio
async def test_assign_to_default_folio_keeps_completed(session):
    ids = await seed_catalog(session)
    default = await add_folio(session, ids["id_temporada"], ids["cc1"], "0")
    header = await add_header(session, ids, estado="COMPLETO")

    result = await folio_allocator.assign_existing_folio(
        session, default.id_folio, [header.id_cabecera_flete]
    )
    assert result["estado"] == "COMPLETADO"


@pytest.mark.anyio
async def test_batch_is_all_or_nothing(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        folio = await add_folio(db, ids["id_temporada"], ids["cc1"], "5")
        other = await add_folio(db, ids["id_temporada"], ids["cc1"], "6")
        good = await add_header(db, ids)
        review = await add_header(db, ids, estado="EN_REVISION")
        taken = await add_header(db, ids, estado="ASIGNADO_FOLIO", id_folio=other.id_folio)
        elsewhere = await add_header(db, ids, id_centro_costo_final=ids["cc2"])
        folio_id = folio.id_folio
        good_id = good.id_cabecera_flete
        batch = [good_id, review.id_cabecera_flete, taken.id_cabecera_flete,
                 elsewhere.id_cabecera_flete, 9999]

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await folio_allocator.assign_existing_folio(db, folio_id, batch)

    assert ctx.value.status_code == 422
    detail = ctx.value.detail
    assert detail["error"] == "Hay registros no elegibles"
    reasons = {item["id_cabecera_flete"]: item["reason"] for item in detail["invalid"]}
    assert reasons == {
        batch[1]: "Estado invalido: EN_REVISION",
        batch[2]: "Ya tiene folio asignado",
        batch[3]: "Centro de costo distinto al del folio",
        9999: "No existe",
    }
    header = await _reload(session_factory, CflCabeceraFlete, good_id)
    assert header.id_folio is None
    assert header.estado == "COMPLETADO"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"bloqueado": True}, "El folio esta bloqueado"),
        ({"estado": "CERRADO"}, "El folio no esta abierto (estado CERRADO)"),
    ],
)
async def test_closed_or_locked_folio_rejects_assignment(session, overrides, message):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc1"], "8", **overrides)
    header = await add_header(session, ids)

    with pytest.raises(HTTPException) as ctx:
        await folio_allocator.assign_existing_folio(
            session, folio.id_folio, [header.id_cabecera_flete]
        )
    assert ctx.value.status_code == 409
    assert ctx.value.detail == message


@pytest.mark.anyio
async def test_create_folio_numbers_sequentially(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        await add_folio(db, ids["id_temporada"], ids["cc1"], "0")
        header_ids = [(await add_header(db, ids)).id_cabecera_flete for _ in range(3)]

    numbers = []
    for header_id in header_ids:
        async with session_factory() as db:
            result = await folio_allocator.create_folio_for_headers(db, [header_id])
            await db.commit()
        numbers.append(result["folio_numero"])
        assert result["estado"] == "ASIGNADO_FOLIO"
        assert result["updated"] == 1

    assert numbers == ["1", "2", "3"]
    header = await _reload(session_factory, CflCabeceraFlete, header_ids[0])
    assert header.estado == "ASIGNADO_FOLIO"


@pytest.mark.anyio
async def test_number_collision_is_409_and_writes_nothing(session_factory, monkeypatch):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        taken = await add_folio(db, ids["id_temporada"], ids["cc1"], "1")
        header = await add_header(db, ids)
        header_id = header.id_cabecera_flete

    async def stale_number(session, id_temporada, id_centro_costo):
        return taken.folio_numero

    monkeypatch.setattr(folio_allocator, "_reserve_folio_number", stale_number)

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            async with unit_of_work(db):
                await folio_allocator.create_folio_for_headers(db, [header_id])

    assert ctx.value.status_code == 409
    assert "Reintente" in ctx.value.detail
    assert await _folio_count(session_factory) == 1
    header = await _reload(session_factory, CflCabeceraFlete, header_id)
    assert header.id_folio is None
    assert header.estado == "COMPLETADO"


@pytest.fixture
async def file_session_factory(tmp_path):
    # Separate connections per session, so transactions really interleave.
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'cfl.db'}", connect_args={"timeout": 30}
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=eng, expire_on_commit=False)
    await eng.dispose()


async def _allocate(factory, header_id, attempts=10):
    for _ in range(attempts):
        async with factory() as db:
            try:
                async with unit_of_work(db):
                    return await folio_allocator.create_folio_for_headers(db, [header_id])
            except HTTPException as exc:
                if exc.status_code != 409:
                    raise
    raise AssertionError(f"folio allocation for {header_id} kept colliding")


@pytest.mark.anyio
async def test_concurrent_allocations_are_gap_free(file_session_factory):
    async with file_session_factory() as db:
        ids = await seed_catalog(db)
        header_ids = [(await add_header(db, ids)).id_cabecera_flete for _ in range(4)]

    results = await asyncio.gather(*(_allocate(file_session_factory, h) for h in header_ids))

    numbers = sorted(int(result["folio_numero"]) for result in results)
    assert numbers == [1, 2, 3, 4]
    assert len({result["id_folio"] for result in results}) == 4
    async with file_session_factory() as db:
        assert await db.scalar(select(func.count(CflFolio.id_folio))) == 4


@pytest.mark.anyio
async def test_create_folio_records_departure_period(session):
    ids = await seed_catalog(session)
    first = await add_header(session, ids, fecha_salida=date(2025, 3, 2))
    last = await add_header(session, ids, fecha_salida=date(2025, 3, 20))

    result = await folio_allocator.create_folio_for_headers(
        session, [first.id_cabecera_flete, last.id_cabecera_flete]
    )

    assert result["periodo_desde"] == date(2025, 3, 2)
    assert result["periodo_hasta"] == date(2025, 3, 20)
    assert result["id_centro_costo"] == ids["cc1"]
    assert result["updated"] == 2


@pytest.mark.anyio
async def test_create_folio_rejects_mixed_cost_centers(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        a = await add_header(db, ids)
        b = await add_header(db, ids, id_centro_costo_final=ids["cc2"])
        batch = [a.id_cabecera_flete, b.id_cabecera_flete]

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await folio_allocator.create_folio_for_headers(db, batch)

    assert ctx.value.status_code == 422
    assert ctx.value.detail["centros_costo"] == sorted([ids["cc1"], ids["cc2"]])
    assert await _folio_count(session_factory) == 0


@pytest.mark.anyio
async def test_create_folio_rejects_ineligible_header(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        ok = await add_header(db, ids)
        voided = await add_header(db, ids, estado="ANULADO")
        batch = [ok.id_cabecera_flete, voided.id_cabecera_flete]

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await folio_allocator.create_folio_for_headers(db, batch)

    assert ctx.value.status_code == 422
    assert ctx.value.detail["invalid"] == [
        {"id_cabecera_flete": batch[1], "reason": "Estado invalido: ANULADO"}
    ]
    assert await _folio_count(session_factory) == 0


@pytest.mark.anyio
async def test_manual_assign_and_unassign_by_delivery(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        folio = await add_folio(db, ids["id_temporada"], ids["cc1"], "2")
        header = await add_header(db, ids)
        await link_delivery(db, header, await add_delivery(db, "8000500"))
        folio_id, header_id = folio.id_folio, header.id_cabecera_flete

    async with session_factory() as db:
        assigned = await folio_allocator.assign_by_delivery_number(db, folio_id, "8000500")
        await db.commit()
    assert assigned == {
        "id_cabecera_flete": header_id,
        "id_folio": folio_id,
        "folio_numero": "2",
        "estado": "ASIGNADO_FOLIO",
    }

    async with session_factory() as db:
        movements = await folio_allocator.list_folio_movements(db, folio_id)
    assert [m["sap_numero_entrega"] for m in movements["movimientos"]] == ["8000500"]
    assert movements["folio"]["folio_numero"] == "2"

    async with session_factory() as db:
        released = await folio_allocator.unassign_by_delivery_number(db, folio_id, "8000500", "PRD")
        await db.commit()
    assert released["folio_numero"] == "0"
    assert released["estado"] == "COMPLETADO"

    header = await _reload(session_factory, CflCabeceraFlete, header_id)
    default = await _reload(session_factory, CflFolio, header.id_folio)
    assert default.folio_numero == "0"
    assert (default.id_temporada, default.id_centro_costo) == (ids["id_temporada"], ids["cc1"])


@pytest.mark.anyio
async def test_manual_assign_to_default_folio_is_rejected(session):
    ids = await seed_catalog(session)
    default = await add_folio(session, ids["id_temporada"], ids["cc1"], "0")
    with pytest.raises(HTTPException) as ctx:
        await folio_allocator.assign_by_delivery_number(session, default.id_folio, "8000600")
    assert ctx.value.status_code == 409


@pytest.mark.anyio
async def test_manual_assign_unknown_delivery_is_404(session):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc1"], "1")
    with pytest.raises(HTTPException) as ctx:
        await folio_allocator.assign_by_delivery_number(session, folio.id_folio, "0000000")
    assert ctx.value.status_code == 404


@pytest.mark.anyio
async def test_manual_assign_matches_suggested_delivery_number(session):
    ids = await seed_catalog(session)
    folio = await add_folio(session, ids["id_temporada"], ids["cc1"], "1")
    header = await add_header(session, ids, sap_numero_entrega_sugerido="8000700")

    result = await folio_allocator.assign_by_delivery_number(session, folio.id_folio, "8000700")
    assert result["id_cabecera_flete"] == header.id_cabecera_flete


@pytest.mark.anyio
async def test_void_is_idempotent(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        header_id = (await add_header(db, ids, estado="ASIGNADO_FOLIO")).id_cabecera_flete

    async with session_factory() as db:
        first = await folio_allocator.void_header(db, header_id)
        await db.commit()
    async with session_factory() as db:
        second = await folio_allocator.void_header(db, header_id)
        await db.commit()

    assert first == {"id_cabecera_flete": header_id, "estado": "ANULADO", "estado_anterior": "ASIGNADO_FOLIO"}
    assert second["estado_anterior"] == "ANULADO"


@pytest.mark.anyio
async def test_invoiced_header_cannot_be_voided(session_factory):
    async with session_factory() as db:
        ids = await seed_catalog(db)
        header_id = (await add_header(db, ids, estado="CERRADO")).id_cabecera_flete

    async with session_factory() as db:
        with pytest.raises(HTTPException) as ctx:
            await folio_allocator.void_header(db, header_id)
    assert ctx.value.status_code == 409

    header = await _reload(session_factory, CflCabeceraFlete, header_id)
    assert header.estado == "CERRADO"


@pytest.mark.anyio
async def test_void_unknown_header_is_404(session):
    with pytest.raises(HTTPException) as ctx:
        await folio_allocator.void_header(session, 77)
    assert ctx.value.status_code == 404
