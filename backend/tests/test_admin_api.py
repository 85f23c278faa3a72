import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from signalhub.api.deps import AdminIdentity, require_admin
from signalhub.api.main import create_app
from signalhub.core.metrics import metrics

from .conftest import ingest_body


@pytest.fixture
def admin(app):
    app.dependency_overrides[require_admin] = lambda: AdminIdentity(username="alice")
    yield
    app.dependency_overrides.pop(require_admin, None)


@pytest.fixture
def created(client, auth_headers, recorder):
    ids = []
    for minute, pair in enumerate(["EUR/USD", "AAPL", "EUR/USD"]):
        body = ingest_body(pair=pair, timestamp=f"2026-01-05T12:{minute:02d}:00Z")
        ids.append(client.post("/api/signals/ingest", json=body, headers=auth_headers).json()["signalId"])
    recorder.events.clear()
    return ids


@pytest.mark.parametrize("method, path", [
    ("GET", "/api/admin/signals"),
    ("GET", "/api/admin/signals/abc"),
    ("POST", "/api/admin/signals"),
    ("PATCH", "/api/admin/signals/abc"),
    ("DELETE", "/api/admin/signals/abc"),
])
def test_routes_require_admin_session(client, method, path):
    response = client.request(method, path, json={})

    assert response.status_code == 401
    assert response.json()["error"] == "admin_session_required"


def test_session_layer_sets_admin(settings):
    app = create_app(settings)

    @app.middleware("http")
    async def fake_session(request: Request, call_next):
        request.state.admin = "ops"
        return await call_next(request)

    with TestClient(app) as client:
        response = client.post("/api/admin/signals", json=ingest_body())

    assert response.status_code == 201
    assert response.json()["signal"]["source"] == "admin:ops"


def test_list_includes_pairs(client, admin, created):
    body = client.get("/api/admin/signals").json()

    assert body["count"] == 3
    assert [s["id"] for s in body["signals"]] == list(reversed(created))
    assert sorted(body["pairs"]) == ["AAPL", "EUR/USD"]


def test_list_filters_by_pair(client, admin, created):
    body = client.get("/api/admin/signals", params={"pair": "AAPL"}).json()

    assert [s["id"] for s in body["signals"]] == [created[1]]


def test_list_limit_bounds(client, admin):
    assert client.get("/api/admin/signals", params={"limit": 10000}).status_code == 200
    assert client.get("/api/admin/signals", params={"limit": 10001}).status_code == 400


def test_get_by_id(client, admin, created):
    assert client.get(f"/api/admin/signals/{created[0]}").json()["signal"]["id"] == created[0]
    assert client.get("/api/admin/signals/missing").status_code == 404


def test_create_tags_admin_and_broadcasts(client, admin, recorder):
    response = client.post("/api/admin/signals", json=ingest_body(source="ignored"))

    assert response.status_code == 201
    assert response.json()["signal"]["source"] == "admin:alice"
    assert [kind for kind, _ in recorder.events] == ["new-signal"]


def test_create_validates_payload(client, admin, recorder):
    response = client.post("/api/admin/signals", json=ingest_body(action="BUY"))

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_direction"
    assert recorder.events == []


def test_patch_applies_override(client, admin, recorder, created):
    response = client.patch(
        f"/api/admin/signals/{created[0]}",
        json={"status": "CLOSED_WIN", "closePrice": 1.0920, "profitPercent": 1.5},
    )

    signal = response.json()["signal"]
    assert signal["status"] == "CLOSED_WIN"
    assert signal["profit"] == pytest.approx(0.0070)
    assert signal["profitPercent"] == pytest.approx(1.5)
    assert [kind for kind, _ in recorder.events] == ["signal-update"]


def test_patch_unknown_is_404(client, admin, recorder):
    response = client.patch("/api/admin/signals/missing", json={"status": "CANCELLED"})

    assert response.status_code == 404
    assert recorder.events == []


def test_delete(client, admin, created):
    response = client.delete(f"/api/admin/signals/{created[0]}")

    assert response.status_code == 204
    assert client.get(f"/api/signals/{created[0]}").status_code == 404
    assert client.delete(f"/api/admin/signals/{created[0]}").status_code == 404
    assert any(e.event_type == "deleted" for e in metrics.get_buffer())
