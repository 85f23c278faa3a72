import asyncio
import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from signalhub.core.exceptions import BroadcastError
from signalhub.core.metrics import metrics
from signalhub.schemas.signal import signal_payload
from signalhub.services.broadcaster import (
    BroadcastEvent,
    EventKind,
    RedisSignalBroadcaster,
    SignalBroadcaster,
    Viewer,
)

from .conftest import make_signal


def stored_signal(**overrides):
    """A signal shaped like a stored row, without touching the database."""
    fields = dict(id="sig-1", status="ACTIVE", source="RiskCompass", created_at=datetime(2026, 1, 5))
    fields.update(overrides)
    return make_signal(**fields)


class StaticStore:
    def __init__(self, active=None):
        self.active = active or []

    async def list_active(self):
        return list(self.active)


class GatedStore:
    """list_active blocks until the test opens the gate."""

    def __init__(self):
        self.gate = asyncio.Event()

    async def list_active(self):
        await self.gate.wait()
        return []


async def test_viewer_gets_snapshot_on_connect(store):
    first = await store.create(make_signal(pair="EUR/USD"))
    second = await store.create(make_signal(pair="GBP/USD"))
    broadcaster = SignalBroadcaster(store)

    viewer = await broadcaster.connect()
    events = viewer.pending()

    assert len(events) == 1
    assert events[0].kind == EventKind.INITIAL
    assert {s["id"] for s in events[0].data} == {first.id, second.id}
    assert broadcaster.viewer_count == 1


async def test_snapshot_precedes_later_events():
    broadcaster = SignalBroadcaster(StaticStore([stored_signal(id="old")]))
    viewer = await broadcaster.connect()

    await broadcaster.publish(EventKind.NEW, stored_signal(id="new"))
    await broadcaster.publish(EventKind.UPDATE, stored_signal(id="old", status="CLOSED_WIN"))

    events = viewer.pending()
    assert [e.kind for e in events] == [EventKind.INITIAL, EventKind.NEW, EventKind.UPDATE]
    assert events[0].data[0]["id"] == "old"
    assert events[1].data["id"] == "new"
    assert events[2].data["status"] == "CLOSED_WIN"


async def test_events_during_snapshot_load_follow_the_snapshot():
    store = GatedStore()
    broadcaster = SignalBroadcaster(store)

    connecting = asyncio.create_task(broadcaster.connect())
    await asyncio.sleep(0)
    delivered = await broadcaster.publish(EventKind.NEW, stored_signal())
    store.gate.set()
    viewer = await connecting

    assert delivered == 1
    assert [e.kind for e in viewer.pending()] == [EventKind.INITIAL, EventKind.NEW]


async def test_publish_fans_out_to_every_viewer():
    broadcaster = SignalBroadcaster(StaticStore())
    viewers = [await broadcaster.connect() for _ in range(3)]

    delivered = await broadcaster.publish(EventKind.NEW, stored_signal())

    assert delivered == 3
    for viewer in viewers:
        assert [e.kind for e in viewer.pending()] == [EventKind.INITIAL, EventKind.NEW]


async def test_publish_without_viewers_is_harmless():
    broadcaster = SignalBroadcaster(StaticStore())
    assert await broadcaster.publish(EventKind.NEW, stored_signal()) == 0


async def test_disconnected_viewer_stops_receiving():
    broadcaster = SignalBroadcaster(StaticStore())
    stays = await broadcaster.connect()
    leaves = await broadcaster.connect()
    leaves.pending()

    broadcaster.disconnect(leaves)
    delivered = await broadcaster.publish(EventKind.NEW, stored_signal())

    assert delivered == 1
    assert broadcaster.viewer_count == 1
    assert leaves.closed
    assert [e.kind for e in stays.pending()] == [EventKind.INITIAL, EventKind.NEW]


async def test_full_queue_drops_only_for_that_viewer():
    broadcaster = SignalBroadcaster(StaticStore(), queue_size=2)
    fast = await broadcaster.connect()
    slow = await broadcaster.connect()
    fast.pending()

    await broadcaster.publish(EventKind.NEW, stored_signal(id="a"))
    fast.pending()
    delivered = await broadcaster.publish(EventKind.NEW, stored_signal(id="b"))

    assert delivered == 1
    assert slow.dropped == 1
    assert [e.data["id"] for e in fast.pending()] == ["b"]
    assert metrics.get_summary()["by_event"]["broadcast/viewer_overflow"] == 1


async def test_failed_snapshot_does_not_leave_viewer_registered():
    class BrokenStore:
        async def list_active(self):
            raise RuntimeError("db down")

    broadcaster = SignalBroadcaster(BrokenStore())
    with pytest.raises(RuntimeError):
        await broadcaster.connect()
    assert broadcaster.viewer_count == 0


async def test_close_ends_waiting_viewers():
    broadcaster = SignalBroadcaster(StaticStore())
    viewer = await broadcaster.connect()
    viewer.pending()

    waiting = asyncio.create_task(viewer.next_event())
    await asyncio.sleep(0)
    await broadcaster.close()

    assert await waiting is None
    assert viewer.closed
    assert broadcaster.viewer_count == 0


async def test_pending_after_close_holds_only_events():
    broadcaster = SignalBroadcaster(StaticStore())
    viewer = await broadcaster.connect()
    await broadcaster.publish(EventKind.NEW, stored_signal())

    broadcaster.disconnect(viewer)

    assert [e.kind for e in viewer.pending()] == [EventKind.INITIAL, EventKind.NEW]
    assert viewer.pending() == []


async def test_next_event_times_out():
    viewer = Viewer("v1")
    viewer.start(BroadcastEvent(EventKind.INITIAL, []))
    assert (await viewer.next_event(timeout=0.01)).kind == EventKind.INITIAL
    assert await viewer.next_event(timeout=0.01) is None


def test_event_sse_format():
    event = BroadcastEvent(EventKind.NEW, {"id": "sig-1", "pair": "EUR/USD"})
    message = event.to_sse()

    assert message["event"] == "new-signal"
    assert json.loads(message["data"]) == {"id": "sig-1", "pair": "EUR/USD"}
    assert BroadcastEvent.from_json(event.to_json()) == event


def test_signal_payload_uses_wire_names():
    payload = signal_payload(stored_signal(profit_percent=None))

    assert payload["stopLoss"] == pytest.approx(1.0820)
    assert payload["takeProfit"] == pytest.approx(1.0920)
    assert payload["createdAt"] == "2026-01-05T00:00:00"
    assert payload["closePrice"] is None
    assert "stop_loss" not in payload


class TestRedisRelay:
    def make(self, redis=None):
        redis = redis or MagicMock()
        redis.close = AsyncMock()
        return RedisSignalBroadcaster(StaticStore(), redis, "signal-events")

    async def test_publish_goes_to_redis_channel(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=2)
        broadcaster = self.make(redis)

        receivers = await broadcaster.publish(EventKind.NEW, stored_signal())

        assert receivers == 2
        channel, raw = redis.publish.call_args.args
        assert channel == "signal-events"
        message = json.loads(raw)
        assert message["kind"] == "new-signal"
        assert message["data"]["stopLoss"] == pytest.approx(1.0820)

    async def test_publish_failure_raises_broadcast_error(self):
        redis = MagicMock()
        redis.publish = AsyncMock(side_effect=RedisConnectionError("refused"))
        broadcaster = self.make(redis)

        with pytest.raises(BroadcastError):
            await broadcaster.publish(EventKind.NEW, stored_signal())

    async def test_relayed_message_reaches_local_viewers(self):
        broadcaster = self.make()
        viewer = await broadcaster.connect()
        event = BroadcastEvent(EventKind.UPDATE, {"id": "sig-1", "pair": "EUR/USD", "status": "CLOSED_WIN"})

        delivered = broadcaster.handle_message({"type": "message", "data": event.to_json()})

        assert delivered == 1
        assert viewer.pending()[-1] == event

    async def test_unreadable_message_is_skipped(self):
        broadcaster = self.make()
        await broadcaster.connect()

        assert broadcaster.handle_message({"type": "message", "data": "not json"}) == 0
        assert broadcaster.handle_message(None) == 0

    async def test_close_disconnects_viewers_and_client(self):
        broadcaster = self.make()
        viewer = await broadcaster.connect()

        await broadcaster.close()

        assert viewer.closed
        broadcaster.redis.close.assert_awaited_once()
