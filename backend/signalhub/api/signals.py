"""
Signals API Router.

Ingestion and lifecycle updates from trusted producers, plus public reads.
"""
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from signalhub.api.deps import (
    get_broadcaster,
    get_settings,
    get_signal_store,
    require_ingest_key,
)
from signalhub.core.config import Settings
from signalhub.core.exceptions import (
    BroadcastError,
    PermissionDeniedError,
    SignalNotFoundError,
    SignalValidationError,
)
from signalhub.core.metrics import metrics
from signalhub.models.base import to_naive_utc
from signalhub.models.signal import Signal
from signalhub.schemas.signal import (
    ActiveSignalsResponse,
    IngestResponse,
    SignalHistoryResponse,
    SignalIngest,
    SignalRead,
    SignalResponse,
    SignalStatusUpdate,
    SignalUpdateResponse,
    StatisticsResponse,
    parse_payload,
)
from signalhub.services.broadcaster import EventKind, SignalBroadcaster
from signalhub.services.signal_store import (
    LifecyclePatch,
    SignalFilter,
    SignalStore,
    Timeframe,
)

router = APIRouter()
logger = logging.getLogger(__name__)

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 500

TEST_SIGNAL_DEFAULTS = {
    "pair": "EUR/USD",
    "action": "LONG",
    "entry": "1.0850",
    "stopLoss": "1.0820",
    "takeProfit": "1.0920",
    "confidence": 85,
    "risk": "2.5",
    "reasoning": "Test signal generated via API",
}


# ---------- Helpers shared with the admin router ----------

def validate_ingest(payload: Any) -> SignalIngest:
    try:
        return parse_payload(SignalIngest, payload)
    except SignalValidationError as exc:
        metrics.ingest_rejected(exc.code, exc.field)
        logger.info("Rejected signal payload: %s", exc)
        raise


def build_signal(data: SignalIngest, source: Optional[str] = None) -> Signal:
    return Signal(
        pair=data.pair,
        action=data.action.value,
        entry=data.entry,
        stop_loss=data.stop_loss,
        take_profit=data.take_profit,
        confidence=data.confidence,
        risk=data.risk,
        reasoning=data.reasoning,
        source=source or data.source,
        created_at=to_naive_utc(data.timestamp) if data.timestamp else None,
    )


def build_patch(data: SignalStatusUpdate) -> LifecyclePatch:
    return LifecyclePatch(
        status=data.status,
        close_price=data.close_price,
        closed_at=to_naive_utc(data.closed_at) if data.closed_at else None,
        profit=data.profit,
        profit_percent=data.profit_percent,
    )


async def announce(broadcaster: SignalBroadcaster, kind: str, signal: Signal) -> None:
    """Publish after a confirmed write. Failures are logged, never raised."""
    try:
        await broadcaster.publish(kind, signal)
    except BroadcastError as exc:
        logger.warning("Broadcast of %s for %s failed: %s", kind, signal.id, exc)
        metrics.broadcast_failed(kind, str(exc))
    except Exception as exc:
        logger.exception("Unexpected error broadcasting %s for %s", kind, signal.id)
        metrics.broadcast_failed(kind, str(exc))


async def create_and_announce(
    store: SignalStore,
    broadcaster: SignalBroadcaster,
    signal: Signal,
) -> Signal:
    saved = await store.create(signal)
    metrics.signal_ingested(saved.pair, saved.action, saved.source)
    await announce(broadcaster, EventKind.NEW, saved)
    return saved


async def update_and_announce(
    store: SignalStore,
    broadcaster: SignalBroadcaster,
    signal_id: str,
    patch: LifecyclePatch,
) -> Signal:
    updated = await store.update_lifecycle(signal_id, patch)
    metrics.signal_updated(
        updated.pair,
        updated.status,
        float(updated.profit_percent) if updated.profit_percent is not None else None,
    )
    await announce(broadcaster, EventKind.UPDATE, updated)
    return updated


# ---------- Endpoints ----------

@router.post(
    "/ingest",
    status_code=201,
    response_model=IngestResponse,
    dependencies=[Depends(require_ingest_key)],
)
async def ingest_signal(
    payload: Dict[str, Any] = Body(...),
    store: SignalStore = Depends(get_signal_store),
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
):
    """Receive a new signal from an external producer, persist it and broadcast it."""
    data = validate_ingest(payload)
    saved = await create_and_announce(store, broadcaster, build_signal(data))
    return IngestResponse(
        signal_id=saved.id,
        message="Signal received and broadcasted",
        signal=SignalRead.model_validate(saved),
    )


@router.post("/test", status_code=201, response_model=IngestResponse)
async def create_test_signal(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    settings: Settings = Depends(get_settings),
    store: SignalStore = Depends(get_signal_store),
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
):
    """Create and broadcast a sample signal (not available in production)."""
    if settings.is_production:
        raise PermissionDeniedError("Test endpoint not available in production")

    overrides = {k: v for k, v in (payload or {}).items() if v is not None}
    data = validate_ingest({**TEST_SIGNAL_DEFAULTS, **overrides})
    saved = await create_and_announce(store, broadcaster, build_signal(data, source="Test"))
    return IngestResponse(
        signal_id=saved.id,
        message="Test signal created and broadcasted",
        signal=SignalRead.model_validate(saved),
    )


@router.get("/active", response_model=ActiveSignalsResponse)
async def get_active_signals(store: SignalStore = Depends(get_signal_store)):
    """All active signals, most recent first."""
    signals = await store.list_active()
    return ActiveSignalsResponse(
        count=len(signals),
        signals=[SignalRead.model_validate(s) for s in signals],
    )


@router.get("/history", response_model=SignalHistoryResponse)
async def get_signal_history(
    limit: int = Query(default=HISTORY_DEFAULT_LIMIT, ge=1, le=HISTORY_MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
    status: Optional[str] = None,
    pair: Optional[str] = None,
    action: Optional[str] = None,
    store: SignalStore = Depends(get_signal_store),
):
    """Signal history with optional filters and offset pagination."""
    signals = await store.list_history(
        SignalFilter(status=status, pair=pair, action=action, limit=limit, offset=offset)
    )
    return SignalHistoryResponse(
        count=len(signals),
        limit=limit,
        offset=offset,
        signals=[SignalRead.model_validate(s) for s in signals],
    )


@router.get("/stats/summary", response_model=StatisticsResponse)
async def get_statistics(
    timeframe: Optional[str] = None,
    store: SignalStore = Depends(get_signal_store),
):
    """Win rate and profit totals for today, week, month or all time."""
    window = Timeframe.parse(timeframe)
    stats = await store.aggregate_statistics(window)
    return StatisticsResponse(timeframe=window.value, statistics=asdict(stats))


@router.get("/{signal_id}", response_model=SignalResponse)
async def get_signal(signal_id: str, store: SignalStore = Depends(get_signal_store)):
    signal = await store.get_by_id(signal_id)
    if signal is None:
        raise SignalNotFoundError(signal_id)
    return SignalResponse(signal=SignalRead.model_validate(signal))


@router.patch(
    "/{signal_id}/status",
    response_model=SignalUpdateResponse,
    dependencies=[Depends(require_ingest_key)],
)
async def update_signal_status(
    signal_id: str,
    payload: Dict[str, Any] = Body(...),
    store: SignalStore = Depends(get_signal_store),
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
):
    """
    Apply a status transition (target or stop hit, cancellation).

    Profit is computed from closePrice unless the caller overrides it.
    Already-closed signals may be patched again.
    """
    data = parse_payload(SignalStatusUpdate, payload)
    updated = await update_and_announce(store, broadcaster, signal_id, build_patch(data))
    return SignalUpdateResponse(signal=SignalRead.model_validate(updated))
