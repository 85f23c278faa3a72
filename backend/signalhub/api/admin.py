"""
Admin Signals API Router.

Manual create, correction and deletion of signals. Every route requires an
administrator resolved by ``require_admin``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from signalhub.api.deps import (
    AdminIdentity,
    get_broadcaster,
    get_signal_store,
    require_admin,
)
from signalhub.api.signals import (
    HISTORY_DEFAULT_LIMIT,
    build_patch,
    build_signal,
    create_and_announce,
    update_and_announce,
    validate_ingest,
)
from signalhub.core.exceptions import SignalNotFoundError
from signalhub.core.metrics import metrics
from signalhub.schemas.signal import (
    AdminSignalListResponse,
    IngestResponse,
    SignalRead,
    SignalResponse,
    SignalStatusUpdate,
    SignalUpdateResponse,
    parse_payload,
)
from signalhub.services.broadcaster import SignalBroadcaster
from signalhub.services.signal_store import SignalFilter, SignalStore

router = APIRouter()
logger = logging.getLogger(__name__)

# Large enough for CSV export from the admin panel
ADMIN_MAX_LIMIT = 10_000


@router.get("", response_model=AdminSignalListResponse)
async def list_signals(
    limit: int = Query(default=HISTORY_DEFAULT_LIMIT, ge=1, le=ADMIN_MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
    status: Optional[str] = None,
    pair: Optional[str] = None,
    action: Optional[str] = None,
    admin: AdminIdentity = Depends(require_admin),
    store: SignalStore = Depends(get_signal_store),
):
    """Filtered signal list plus the distinct pairs for the filter dropdown."""
    signals = await store.list_history(
        SignalFilter(status=status, pair=pair, action=action, limit=limit, offset=offset)
    )
    pairs = await store.list_pairs()
    return AdminSignalListResponse(
        count=len(signals),
        limit=limit,
        offset=offset,
        pairs=pairs,
        signals=[SignalRead.model_validate(s) for s in signals],
    )


@router.get("/{signal_id}", response_model=SignalResponse)
async def get_signal(
    signal_id: str,
    admin: AdminIdentity = Depends(require_admin),
    store: SignalStore = Depends(get_signal_store),
):
    signal = await store.get_by_id(signal_id)
    if signal is None:
        raise SignalNotFoundError(signal_id)
    return SignalResponse(signal=SignalRead.model_validate(signal))


@router.post("", status_code=201, response_model=IngestResponse)
async def create_signal(
    payload: Dict[str, Any] = Body(...),
    admin: AdminIdentity = Depends(require_admin),
    store: SignalStore = Depends(get_signal_store),
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
):
    """Create a signal by hand; it is tagged with the creating admin."""
    data = validate_ingest(payload)
    saved = await create_and_announce(
        store, broadcaster, build_signal(data, source=f"admin:{admin.username}")
    )
    logger.info("Signal %s created by admin %s", saved.id, admin.username)
    return IngestResponse(
        signal_id=saved.id,
        message="Signal created and broadcasted",
        signal=SignalRead.model_validate(saved),
    )


@router.patch("/{signal_id}", response_model=SignalUpdateResponse)
async def update_signal(
    signal_id: str,
    payload: Dict[str, Any] = Body(...),
    admin: AdminIdentity = Depends(require_admin),
    store: SignalStore = Depends(get_signal_store),
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
):
    """Correct a signal's lifecycle fields, including profit overrides."""
    data = parse_payload(SignalStatusUpdate, payload)
    updated = await update_and_announce(store, broadcaster, signal_id, build_patch(data))
    logger.info("Signal %s updated by admin %s", signal_id, admin.username)
    return SignalUpdateResponse(signal=SignalRead.model_validate(updated))


@router.delete("/{signal_id}", status_code=204)
async def delete_signal(
    signal_id: str,
    admin: AdminIdentity = Depends(require_admin),
    store: SignalStore = Depends(get_signal_store),
) -> Response:
    signal = await store.get_by_id(signal_id)
    if signal is None or not await store.delete(signal_id):
        raise SignalNotFoundError(signal_id)
    metrics.signal_deleted(signal.pair)
    logger.info("Signal %s deleted by admin %s", signal_id, admin.username)
    return Response(status_code=204)
