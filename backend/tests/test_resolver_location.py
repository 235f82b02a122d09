from __future__ import annotations

import asyncio

import pytest

from catalog_fixtures import (
    CENTRO_1,
    CENTRO_2,
    CUAUHTEMOC,
    JUAREZ,
    SIN_CODIGO,
    ZAPOPAN,
    wait_until,
)


async def _at_cuauhtemoc(make_resolver, **kwargs):
    resolver = make_resolver("location_first", **kwargs)
    await resolver.load_states()
    await resolver.choose_state(9)
    await resolver.choose_municipality(CUAUHTEMOC.id)
    return resolver


@pytest.mark.asyncio
async def test_choosing_state_loads_its_municipalities(make_resolver):
    resolver = make_resolver("location_first")
    states = await resolver.load_states()
    assert len(states) == 3
    assert [item.name for item in resolver.filter_states("mexico")] == [
        "Ciudad de México",
        "México",
    ]

    await resolver.choose_state(9)

    snapshot = resolver.snapshot()
    assert snapshot.status == "idle"
    assert snapshot.selection.state_id == 9
    assert snapshot.state_name == "Ciudad de México"
    assert resolver.filter_municipalities("cuauhtemoc") == [CUAUHTEMOC]
    assert len(resolver.filter_municipalities(None)) == 2


@pytest.mark.asyncio
async def test_unknown_state_is_ignored_once_states_are_loaded(make_resolver):
    resolver = make_resolver("location_first")
    await resolver.load_states()

    await resolver.choose_state(99)

    assert resolver.snapshot().selection.state_id is None


@pytest.mark.asyncio
async def test_choosing_municipality_loads_settlements_and_postal_codes(
    make_resolver,
):
    resolver = await _at_cuauhtemoc(make_resolver)

    snapshot = resolver.snapshot()
    assert snapshot.status == "idle"
    assert snapshot.selection.municipality_id == CUAUHTEMOC.id
    assert snapshot.municipality_name == "Cuauhtémoc"
    assert {item.id for item in snapshot.candidates} == {101, 102, 103, 104, 105}
    assert [item.postal_code for item in resolver.postal_code_summary] == [
        "06000",
        "06010",
        "06300",
        "06600",
    ]


@pytest.mark.asyncio
async def test_municipality_from_another_state_is_rejected(make_resolver, gateway):
    resolver = make_resolver("location_first")
    await resolver.choose_state(9)

    await resolver.choose_municipality(ZAPOPAN.id)

    assert resolver.snapshot().selection.municipality_id is None
    assert gateway.count("list_settlements_by_municipality") == 0


@pytest.mark.asyncio
async def test_single_code_settlement_fills_postal_code(make_resolver):
    resolver = await _at_cuauhtemoc(make_resolver)

    resolver.choose_settlement(JUAREZ.id)

    snapshot = resolver.snapshot()
    assert snapshot.status == "resolved"
    assert snapshot.selection.settlement_id == JUAREZ.id
    assert snapshot.selection.postal_code == "06600"


@pytest.mark.asyncio
async def test_multi_code_settlement_waits_for_postal_code_choice(make_resolver):
    resolver = await _at_cuauhtemoc(make_resolver)

    resolver.choose_settlement(CENTRO_1.id)

    snapshot = resolver.snapshot()
    assert snapshot.status == "idle"
    assert snapshot.selection.postal_code is None
    assert snapshot.postal_code_options == ("06000", "06010")

    resolver.choose_postal_code("06600")
    assert resolver.snapshot().selection.postal_code is None

    resolver.choose_postal_code("06010")
    snapshot = resolver.snapshot()
    assert snapshot.selection.postal_code == "06010"
    assert snapshot.status == "resolved"


@pytest.mark.asyncio
async def test_switching_settlement_replaces_postal_code(make_resolver):
    resolver = await _at_cuauhtemoc(make_resolver)
    resolver.choose_settlement(JUAREZ.id)

    resolver.choose_settlement(CENTRO_2.id)

    assert resolver.snapshot().selection.postal_code == "06000"


@pytest.mark.asyncio
async def test_settlement_without_postal_codes_allows_manual_entry(make_resolver):
    resolver = await _at_cuauhtemoc(make_resolver)

    resolver.choose_settlement(SIN_CODIGO.id)

    snapshot = resolver.snapshot()
    assert snapshot.selection.settlement_id == SIN_CODIGO.id
    assert snapshot.selection.postal_code is None
    assert snapshot.warnings

    resolver.enter_postal_code("06999")
    assert resolver.snapshot().selection.postal_code == "06999"


@pytest.mark.asyncio
async def test_manual_postal_code_is_ignored_when_derived(make_resolver, gateway):
    resolver = await _at_cuauhtemoc(make_resolver)
    resolver.choose_settlement(JUAREZ.id)

    resolver.enter_postal_code("06000")

    assert resolver.snapshot().selection.postal_code == "06600"
    assert gateway.count("lookup_by_postal_code") == 0


@pytest.mark.asyncio
async def test_settlement_search_narrows_candidates(make_resolver, gateway):
    resolver = await _at_cuauhtemoc(make_resolver)

    resolver.search_settlements("centro")
    await resolver.settled()

    snapshot = resolver.snapshot()
    assert {item.id for item in snapshot.candidates} == {CENTRO_1.id, CENTRO_2.id}
    assert ("list_settlements_by_municipality", (15, "centro")) in gateway.calls

    resolver.choose_settlement(CENTRO_2.id)
    assert resolver.snapshot().selection.postal_code == "06000"


@pytest.mark.asyncio
async def test_settlement_search_requires_municipality(make_resolver, gateway):
    resolver = make_resolver("location_first")

    resolver.search_settlements("centro")
    await resolver.settled()

    assert gateway.count("list_settlements_by_municipality") == 0


@pytest.mark.asyncio
async def test_stale_municipality_list_is_discarded(make_resolver, gateway):
    resolver = make_resolver("location_first")
    gate = gateway.hold("list_municipalities", 9)

    slow = asyncio.create_task(resolver.choose_state(9))
    await wait_until(lambda: ("list_municipalities", 9) in gateway.calls)
    await resolver.choose_state(14)
    gate.set()
    await slow

    snapshot = resolver.snapshot()
    assert snapshot.selection.state_id == 14
    assert resolver.filter_municipalities() == [ZAPOPAN]


@pytest.mark.asyncio
async def test_municipality_fetch_failure_reports_error(make_resolver, gateway):
    resolver = make_resolver("location_first")
    gateway.failing.add("list_municipalities")

    await resolver.choose_state(9)

    snapshot = resolver.snapshot()
    assert snapshot.status == "error"
    assert snapshot.message
    assert resolver.filter_municipalities() == []


@pytest.mark.asyncio
async def test_custom_settlement_in_location_workflow(make_resolver, gateway):
    resolver = await _at_cuauhtemoc(make_resolver)

    resolver.enable_custom_settlement("Colonia Nueva")
    resolver.enter_postal_code("06050")
    created = await resolver.submit_custom_settlement()

    assert created is not None
    sel = resolver.snapshot().selection
    assert sel.settlement_id == created.id
    assert sel.postal_code == "06050"
    assert gateway.created[0].municipality_id == CUAUHTEMOC.id
