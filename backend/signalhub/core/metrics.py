"""
Metrics emission system for observability.

Provides structured metrics for:
- Signal ingestion (accepted and rejected payloads)
- Lifecycle updates (closes, cancellations, admin edits)
- Broadcast fan-out (viewers reached, dropped events, publish failures)
- Authentication rejections

Metrics are emitted to:
1. Python logging (immediate visibility)
2. In-memory buffer (API aggregation)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "ingest", "lifecycle", "broadcast", "auth"
    event_type: str        # "accepted", "rejected", "delivered", etc.
    pair: Optional[str]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "pair": self.pair,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to the log and a bounded buffer.

    All callers run on the event loop thread, so no locking is needed.
    """

    # Category constants
    CATEGORY_INGEST = "ingest"
    CATEGORY_LIFECYCLE = "lifecycle"
    CATEGORY_BROADCAST = "broadcast"
    CATEGORY_AUTH = "auth"

    def __init__(self, buffer_size: int = 1000):
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []
        self._enabled = True

    def enable(self) -> None:
        """Enable metrics emission."""
        self._enabled = True

    def disable(self) -> None:
        """Disable metrics emission (for testing)."""
        self._enabled = False

    def emit(
        self,
        category: str,
        event_type: str,
        value: float,
        pair: str = None,
        metadata: dict = None
    ) -> Optional[MetricEvent]:
        """
        Emit a metric event.

        Args:
            category: Event category (ingest, lifecycle, broadcast, auth)
            event_type: Specific event type within category
            value: Numeric value (1.0 for counters, actual value for numeric)
            pair: Optional instrument pair
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent, or None when disabled
        """
        if not self._enabled:
            return None

        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            pair=pair,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.info(
            f"METRIC [{category}/{event_type}] "
            f"pair={pair} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]

        return event

    # =========================================================================
    # Convenience methods for common metrics
    # =========================================================================

    def signal_ingested(self, pair: str, action: str, source: str) -> MetricEvent:
        """Record an accepted signal."""
        return self.emit(
            self.CATEGORY_INGEST, "accepted", 1.0,
            pair=pair,
            metadata={"action": action, "source": source}
        )

    def ingest_rejected(self, reason: str, field_name: str = None) -> MetricEvent:
        """Record a payload rejected by validation."""
        return self.emit(
            self.CATEGORY_INGEST, "rejected", 1.0,
            metadata={"reason": reason, "field": field_name}
        )

    def signal_updated(self, pair: str, status: str,
                       profit_percent: Optional[float]) -> MetricEvent:
        """Record a lifecycle update."""
        return self.emit(
            self.CATEGORY_LIFECYCLE, "updated",
            profit_percent if profit_percent is not None else 0.0,
            pair=pair,
            metadata={"status": status}
        )

    def signal_deleted(self, pair: str) -> MetricEvent:
        """Record an admin delete."""
        return self.emit(self.CATEGORY_LIFECYCLE, "deleted", 1.0, pair=pair)

    def broadcast_delivered(self, kind: str, viewers: int,
                            pair: str = None) -> MetricEvent:
        """Record fan-out of one event."""
        return self.emit(
            self.CATEGORY_BROADCAST, "delivered", viewers,
            pair=pair,
            metadata={"kind": kind}
        )

    def broadcast_failed(self, kind: str, error: str) -> MetricEvent:
        """Record a publish that did not reach the transport."""
        return self.emit(
            self.CATEGORY_BROADCAST, "failed", 1.0,
            metadata={"kind": kind, "error": error}
        )

    def viewer_dropped_event(self, viewer_id: str, kind: str) -> MetricEvent:
        """Record an event dropped for a slow viewer."""
        return self.emit(
            self.CATEGORY_BROADCAST, "viewer_overflow", 1.0,
            metadata={"viewer": viewer_id, "kind": kind}
        )

    def auth_rejected(self, reason: str, client: str = None) -> MetricEvent:
        """Record a refused ingestion credential."""
        return self.emit(
            self.CATEGORY_AUTH, "rejected", 1.0,
            metadata={"reason": reason, "client": client}
        )

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def get_buffer(self) -> List[MetricEvent]:
        """Get buffered events (for API)."""
        return list(self._buffer)

    def get_summary(self, hours: int = 24) -> dict:
        """
        Get aggregated summary of recent metrics.

        Args:
            hours: How many hours of data to include

        Returns:
            Dictionary with aggregated metrics
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_category: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        viewers_reached = 0

        for event in recent:
            by_category[event.category] = by_category.get(event.category, 0) + 1
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1
            if key == "broadcast/delivered":
                viewers_reached += int(event.value)

        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_category": by_category,
            "by_event": by_event,
            "signals_ingested": by_event.get("ingest/accepted", 0),
            "ingest_rejections": by_event.get("ingest/rejected", 0),
            "lifecycle_updates": by_event.get("lifecycle/updated", 0),
            "broadcast_failures": by_event.get("broadcast/failed", 0),
            "viewers_reached": viewers_reached,
            "auth_rejections": by_event.get("auth/rejected", 0),
        }

    def clear_buffer(self) -> int:
        """Clear buffer and return count of cleared events."""
        count = len(self._buffer)
        self._buffer = []
        return count


# Global singleton instance
metrics = MetricsEmitter()
