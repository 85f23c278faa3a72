import asyncio
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from signalhub.api.deps import get_broadcaster, get_settings
from signalhub.core.config import Settings
from signalhub.services.broadcaster import SignalBroadcaster

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/stream")
async def signal_stream(
    request: Request,
    broadcaster: SignalBroadcaster = Depends(get_broadcaster),
    settings: Settings = Depends(get_settings),
) -> EventSourceResponse:
    """
    Server-Sent Events endpoint.
    Sends ``initial-signals`` once, then ``new-signal`` / ``signal-update`` as they happen.
    """
    viewer = await broadcaster.connect()

    async def event_generator() -> AsyncGenerator[dict, None]:
        try:
            while True:
                if await request.is_disconnected():
                    break

                event = await viewer.next_event(timeout=1.0)
                if event is None:
                    if viewer.closed:
                        break
                    continue

                yield event.to_sse()

        except asyncio.CancelledError:
            logger.info("Stream connection cancelled for viewer %s", viewer.id)
            raise
        finally:
            broadcaster.disconnect(viewer)

    return EventSourceResponse(event_generator(), ping=settings.SSE_PING_SECONDS)
