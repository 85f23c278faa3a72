from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from signalhub.api.main import create_app
from signalhub.core.config import Settings
from signalhub.core.database import build_engine, build_session_factory, create_tables
from signalhub.core.exceptions import BroadcastError
from signalhub.core.metrics import metrics
from signalhub.models.signal import Signal
from signalhub.schemas.signal import signal_payload
from signalhub.services.signal_store import SignalStore

API_KEY = "test-ingest-key"
BASE_TIME = datetime(2026, 1, 5, 12, 0, 0)


def make_signal(**overrides) -> Signal:
    fields = dict(
        pair="EUR/USD",
        action="LONG",
        entry=Decimal("1.0850"),
        stop_loss=Decimal("1.0820"),
        take_profit=Decimal("1.0920"),
        confidence=85,
        risk=Decimal("2.5"),
        reasoning="Breakout above resistance",
    )
    fields.update(overrides)
    return Signal(**fields)


def ingest_body(**overrides) -> dict:
    body = {
        "pair": "EUR/USD",
        "action": "LONG",
        "entry": 1.0850,
        "stopLoss": 1.0820,
        "takeProfit": 1.0920,
        "confidence": 85,
        "risk": 2.5,
        "reasoning": "Breakout above resistance",
    }
    body.update(overrides)
    return body


class RecordingBroadcaster:
    """Stands in for the broadcaster and remembers what was published."""

    def __init__(self):
        self.events = []

    async def publish(self, kind, signal):
        self.events.append((kind, signal_payload(signal)))
        return 1


class FailingBroadcaster:
    async def publish(self, kind, signal):
        raise BroadcastError("transport down")


@pytest.fixture(autouse=True)
def clear_metrics():
    metrics.clear_buffer()
    yield
    metrics.clear_buffer()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'signals.db'}"


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(
        DATABASE_URL=db_url,
        SIGNAL_API_KEY=API_KEY,
        ENVIRONMENT="local",
        DB_AUTO_CREATE=True,
        BROADCAST_BACKEND="memory",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def recorder(app, client) -> RecordingBroadcaster:
    from signalhub.api.deps import get_broadcaster

    recording = RecordingBroadcaster()
    app.dependency_overrides[get_broadcaster] = lambda: recording
    yield recording
    app.dependency_overrides.pop(get_broadcaster, None)


@pytest.fixture
async def store(db_url):
    engine = build_engine(db_url)
    await create_tables(engine)
    yield SignalStore(build_session_factory(engine), default_source="RiskCompass")
    await engine.dispose()


@pytest.fixture
def timestamps():
    """Distinct, increasing creation times."""
    return [BASE_TIME + timedelta(minutes=i) for i in range(10)]
