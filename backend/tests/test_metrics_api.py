from signalhub.core.metrics import MetricsEmitter, metrics

from .conftest import FailingBroadcaster, ingest_body


def test_summary_counts_pipeline_events(client, auth_headers, recorder):
    client.post("/api/signals/ingest", json=ingest_body(), headers=auth_headers)
    client.post("/api/signals/ingest", json=ingest_body(action="HOLD"), headers=auth_headers)
    client.post("/api/signals/ingest", json=ingest_body(), headers={"Authorization": "Bearer nope"})

    summary = client.get("/api/metrics/summary").json()

    assert summary["period_hours"] == 24
    assert summary["signals_ingested"] == 1
    assert summary["ingest_rejections"] == 1
    assert summary["auth_rejections"] == 1
    assert summary["by_event"]["ingest/rejected"] == 1


def test_broadcast_failure_is_counted(app, client, auth_headers):
    from signalhub.api.deps import get_broadcaster

    app.dependency_overrides[get_broadcaster] = lambda: FailingBroadcaster()
    try:
        client.post("/api/signals/ingest", json=ingest_body(), headers=auth_headers)
    finally:
        app.dependency_overrides.pop(get_broadcaster, None)

    assert client.get("/api/metrics/summary").json()["broadcast_failures"] == 1


def test_events_filter_and_order(client):
    metrics.signal_ingested("EUR/USD", "LONG", "RiskCompass")
    metrics.auth_rejected("invalid_credential", "10.0.0.1")
    metrics.signal_ingested("AAPL", "SHORT", "Desk")

    events = client.get("/api/metrics/events", params={"category": "ingest"}).json()

    assert [e["pair"] for e in events] == ["AAPL", "EUR/USD"]
    assert events[0]["metadata"] == {"action": "SHORT", "source": "Desk"}

    limited = client.get("/api/metrics/events", params={"limit": 1}).json()
    assert len(limited) == 1


def test_emitter_buffer_is_bounded():
    emitter = MetricsEmitter(buffer_size=3)
    for i in range(5):
        emitter.signal_deleted(f"P{i}")

    assert [e.pair for e in emitter.get_buffer()] == ["P2", "P3", "P4"]
    assert emitter.clear_buffer() == 3


def test_disabled_emitter_records_nothing():
    emitter = MetricsEmitter()
    emitter.disable()

    assert emitter.broadcast_failed("new-signal", "down") is None
    assert emitter.get_buffer() == []
