from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from catalog_fixtures import CENTRO_1, FakeCatalogGateway, JUAREZ
from georesolve.main import app
from georesolve.services.cache import CatalogCache
from georesolve.services.resolver import AddressResolver
from georesolve.services.sessions import AddressSessionRegistry


@pytest.fixture
def client(monkeypatch):
    registry = AddressSessionRegistry(
        CatalogCache(FakeCatalogGateway()),
        resolver_factory=lambda cache, mode: AddressResolver(
            cache, mode=mode, debounce_seconds=0.0, lookup_timeout=1.0
        ),
    )
    monkeypatch.setattr("georesolve.services.sessions._registry", registry)
    with TestClient(app) as test_client:
        yield test_client


def _open(client: TestClient, mode: str = "postal_code_first") -> str:
    response = client.post("/v1/address-sessions", json={"mode": mode})
    assert response.status_code == 201
    return response.json()["session_id"]


def test_postal_code_workflow(client: TestClient):
    session_id = _open(client)
    base = f"/v1/address-sessions/{session_id}"

    body = client.put(f"{base}/postal-code", json={"value": "06000"}).json()
    assert body["status"] == "awaiting_settlement_choice"
    assert body["selection"]["state_id"] == 9
    assert len(body["candidates"]) == 2

    body = client.put(
        f"{base}/settlement", json={"settlement_id": CENTRO_1.id}
    ).json()
    assert body["status"] == "resolved"
    assert body["selection"]["postal_code"] == "06000"

    resolved = client.get(f"{base}/resolved").json()
    assert resolved["resolved"] is False

    client.put(f"{base}/street", json={"street": "Madero", "exterior_number": 5})
    resolved = client.get(f"{base}/resolved").json()
    assert resolved["resolved"] is True

    fields = client.get(f"{base}/payload", params={"prefix": "home_"}).json()[
        "fields"
    ]
    assert fields["home_settlement_id"] == CENTRO_1.id
    assert fields["home_exterior_number"] == "5"


def test_location_workflow(client: TestClient):
    session_id = _open(client, "location_first")
    base = f"/v1/address-sessions/{session_id}"

    body = client.put(f"{base}/state", json={"state_id": 9}).json()
    assert body["status"] == "idle"
    assert body["state_name"] == "Ciudad de México"

    body = client.put(f"{base}/municipality", json={"municipality_id": 15}).json()
    assert len(body["candidates"]) == 5

    body = client.put(f"{base}/settlement-search", json={"term": "juarez"}).json()
    assert [item["id"] for item in body["candidates"]] == [JUAREZ.id]

    body = client.put(f"{base}/settlement", json={"settlement_id": JUAREZ.id}).json()
    assert body["status"] == "resolved"
    assert body["selection"]["postal_code"] == "06600"


def test_mode_switch_clears_selection(client: TestClient):
    session_id = _open(client)
    base = f"/v1/address-sessions/{session_id}"
    client.put(f"{base}/postal-code", json={"value": "06600"})

    body = client.put(f"{base}/mode", json={"mode": "location_first"}).json()

    assert body["selection"]["mode"] == "location_first"
    assert body["selection"]["postal_code"] is None
    assert body["selection"]["settlement_id"] is None


def test_invalid_mode_is_rejected(client: TestClient):
    response = client.post("/v1/address-sessions", json={"mode": "street_first"})
    assert response.status_code == 422


def test_unknown_session_returns_404(client: TestClient):
    response = client.get(f"/v1/address-sessions/{uuid4()}")
    assert response.status_code == 404


def test_custom_settlement_submission(client: TestClient):
    session_id = _open(client)
    base = f"/v1/address-sessions/{session_id}"
    client.put(f"{base}/postal-code", json={"value": "06000"})

    body = client.put(
        f"{base}/custom-settlement", json={"name": "Colonia Test"}
    ).json()
    assert body["selection"]["settlement_custom"] == "Colonia Test"

    body = client.post(f"{base}/custom-settlement/submit", json={}).json()
    assert body["selection"]["settlement_custom"] is None
    assert body["selection"]["settlement_id"] == 901

    body = client.delete(f"{base}/custom-settlement").json()
    assert body["selection"]["settlement_id"] == 901


def test_closed_session_is_gone(client: TestClient):
    session_id = _open(client)

    assert client.delete(f"/v1/address-sessions/{session_id}").status_code == 204
    assert client.get(f"/v1/address-sessions/{session_id}").status_code == 404
    assert client.delete(f"/v1/address-sessions/{session_id}").status_code == 404


def test_catalog_state_search(client: TestClient):
    response = client.get("/v1/catalogs/states", params={"q": "mexico"})

    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == [
        "Ciudad de México",
        "México",
    ]


def test_catalog_municipality_search(client: TestClient):
    response = client.get(
        "/v1/catalogs/states/9/municipalities", params={"q": "JUÁREZ"}
    )

    assert [item["id"] for item in response.json()] == [14]


def test_opened_session_is_immediately_readable(client: TestClient):
    response = client.post("/v1/address-sessions", json={"mode": "location_first"})
    body = response.json()

    assert body["status"] == "idle"
    assert body["selection"]["mode"] == "location_first"
    fetched = client.get(f"/v1/address-sessions/{body['session_id']}").json()
    assert fetched["session_id"] == body["session_id"]
