"""
Signal broadcast channel.

Fans signal events out to every connected viewer. A viewer that connects
first receives the current active-signal snapshot as ``initial-signals``;
events published while that snapshot is being read are held back and
delivered right after it, so the snapshot always arrives first.

Delivery is best effort: no acknowledgment, no replay after disconnect.
A viewer whose queue is full loses that event; other viewers are unaffected.

Classes:
    EventKind               event names on the wire
    BroadcastEvent          one event, convertible to an SSE message
    Viewer                  one connected client and its pending events
    SignalBroadcaster       in-process fan-out
    RedisSignalBroadcaster  fan-out relayed through Redis pub/sub
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from signalhub.core.exceptions import BroadcastError
from signalhub.core.metrics import metrics
from signalhub.schemas.signal import signal_payload
from signalhub.services.signal_store import SignalStore

logger = logging.getLogger(__name__)


class EventKind:
    """Event names shared by SSE and the Redis relay."""

    INITIAL = "initial-signals"
    NEW = "new-signal"
    UPDATE = "signal-update"


@dataclass
class BroadcastEvent:
    kind: str
    data: Any

    def to_sse(self) -> dict:
        return {"event": self.kind, "data": json.dumps(self.data)}

    def to_json(self) -> str:
        return json.dumps({"kind": self.kind, "data": self.data})

    @classmethod
    def from_json(cls, raw: str) -> "BroadcastEvent":
        message = json.loads(raw)
        return cls(kind=message["kind"], data=message["data"])


class Viewer:
    """A connected client. Events queue here until the transport pulls them."""

    def __init__(self, viewer_id: str, max_queue: int = 256):
        self.id = viewer_id
        self.max_queue = max_queue
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._backlog: List[BroadcastEvent] = []
        self._ready = False
        self.closed = False
        self.dropped = 0

    def start(self, initial: BroadcastEvent) -> None:
        """Queue the snapshot, then anything published while it was loading."""
        self._queue.put_nowait(initial)
        backlog, self._backlog = self._backlog, []
        self._ready = True
        for event in backlog:
            self.offer(event)

    def offer(self, event: BroadcastEvent) -> bool:
        """Enqueue without waiting. Returns False if the event was dropped."""
        if self.closed:
            return False
        if not self._ready:
            if len(self._backlog) >= self.max_queue:
                self.dropped += 1
                return False
            self._backlog.append(event)
            return True
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def next_event(self, timeout: Optional[float] = None) -> Optional[BroadcastEvent]:
        """Next pending event, or None on timeout or close."""
        if self.closed and self._queue.empty():
            return None
        try:
            if timeout is None:
                event = await self._queue.get()
            else:
                event = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        return event

    def pending(self) -> List[BroadcastEvent]:
        """Drain and return whatever is queued right now, minus the close marker."""
        events = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        self.closed = True
        # Wake a reader blocked on get()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class SignalBroadcaster:
    """
    In-process publish/subscribe for signal events.

    The viewer registry is only touched from the event loop, so fan-out
    iterates over a snapshot of the current viewers without locking.
    """

    def __init__(self, store: SignalStore, queue_size: int = 256):
        self.store = store
        self.queue_size = queue_size
        self._viewers: Dict[str, Viewer] = {}

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    async def start(self) -> None:
        """Hook for backends with background work."""

    async def connect(self) -> Viewer:
        """Register a viewer and queue the active-signal snapshot for it."""
        viewer = Viewer(uuid.uuid4().hex, self.queue_size)
        self._viewers[viewer.id] = viewer
        try:
            active = await self.store.list_active()
        except Exception:
            self._viewers.pop(viewer.id, None)
            raise
        viewer.start(BroadcastEvent(EventKind.INITIAL, [signal_payload(s) for s in active]))
        logger.info(
            "Viewer %s connected (%s active signals, %s viewers)",
            viewer.id, len(active), self.viewer_count,
        )
        return viewer

    def disconnect(self, viewer: Viewer) -> None:
        if self._viewers.pop(viewer.id, None) is not None:
            viewer.close()
            logger.info("Viewer %s disconnected (%s viewers)", viewer.id, self.viewer_count)

    async def publish(self, kind: str, signal: Any) -> int:
        """Send one signal event to every connected viewer. Returns viewers reached."""
        return self.deliver(BroadcastEvent(kind, signal_payload(signal)))

    def deliver(self, event: BroadcastEvent) -> int:
        delivered = 0
        for viewer in list(self._viewers.values()):
            if viewer.offer(event):
                delivered += 1
            else:
                logger.warning("Viewer %s dropped %s event (queue full)", viewer.id, event.kind)
                metrics.viewer_dropped_event(viewer.id, event.kind)
        pair = event.data.get("pair") if isinstance(event.data, dict) else None
        metrics.broadcast_delivered(event.kind, delivered, pair=pair)
        return delivered

    async def close(self) -> None:
        """Disconnect every viewer so open streams end."""
        for viewer in list(self._viewers.values()):
            self.disconnect(viewer)


class RedisSignalBroadcaster(SignalBroadcaster):
    """
    Broadcaster for multi-process deployments.

    ``publish`` writes to a Redis channel; a background listener in every
    process relays channel messages to that process's local viewers.
    """

    def __init__(
        self,
        store: SignalStore,
        redis: AsyncRedis,
        channel: str,
        queue_size: int = 256,
    ):
        super().__init__(store, queue_size)
        self.redis = redis
        self.channel = channel
        self._listener: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        self._running = True
        self._listener = asyncio.create_task(self._listen())
        logger.info("Relaying signal events through Redis channel %s", self.channel)

    async def publish(self, kind: str, signal: Any) -> int:
        event = BroadcastEvent(kind, signal_payload(signal))
        try:
            receivers = await self.redis.publish(self.channel, event.to_json())
        except RedisError as exc:
            raise BroadcastError(f"Redis publish failed: {exc}") from exc
        return int(receivers or 0)

    def handle_message(self, message: Optional[dict]) -> int:
        """Relay one pub/sub message to local viewers."""
        if not message or not message.get("data"):
            return 0
        raw = message["data"]
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            event = BroadcastEvent.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(f"Error parsing relayed signal event: {exc}")
            return 0
        return self.deliver(event)

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            while self._running:
                try:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except RedisError as exc:
                    logger.error(f"Redis relay error: {exc}")
                    await asyncio.sleep(5)
                    continue
                self.handle_message(message)
        except asyncio.CancelledError:
            logger.info("Redis relay listener cancelled")
            raise
        finally:
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.close()
            except RedisError:
                logger.warning("Failed to unsubscribe from %s", self.channel)

    async def close(self) -> None:
        self._running = False
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await super().close()
        await self.redis.close()
