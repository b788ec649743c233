"""Server-Sent Events relay for telemetry change notifications."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..runtime import TelemetryRuntime
from .deps import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.get("/stream")
async def stream_events(runtime: TelemetryRuntime = Depends(get_runtime)):
    """SSE endpoint pushing statusChanged, connectionChanged and logStoreUpdated."""
    bus = runtime.bus
    queue = bus.subscribe_queue()

    async def _generate():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue

                if event is None:
                    # Shutdown signal
                    break

                yield f"event: {event['event']}\ndata: {json.dumps(event['data'], default=str)}\n\n"
        except asyncio.CancelledError:
            pass
        finally:
            bus.unsubscribe_queue(queue)

    return StreamingResponse(
        _generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )
