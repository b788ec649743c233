"""Publish/subscribe hub for telemetry change notifications."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

STATUS_CHANGED = "statusChanged"
CONNECTION_CHANGED = "connectionChanged"
LOG_STORE_UPDATED = "logStoreUpdated"

# Messages buffered per SSE client; a stalled client drops newer ones
SSE_QUEUE_SIZE = 100

Listener = Callable[[Any], None]


class EventBus:
    """Dispatches named events to callbacks and to SSE queues.

    Callbacks run synchronously inside :meth:`emit`. A failing callback is
    logged and does not prevent delivery to the remaining subscribers.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._queues: set[asyncio.Queue[dict | None]] = set()

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *event*. Returns a function that removes it."""
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.unsubscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(listener)
        if not listeners:
            del self._listeners[event]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any, wire: Any = None) -> None:
        """Deliver *payload* to listeners.

        SSE queues get *wire* when given, otherwise the serialized payload.
        """
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s failed", event)

        if self._queues:
            message = {"event": event, "data": wire if wire is not None else _to_wire(payload)}
            for queue in self._queues:
                with contextlib.suppress(asyncio.QueueFull):
                    queue.put_nowait(message)

    # --- SSE -----------------------------------------------------------------

    def subscribe_queue(self, maxsize: int = SSE_QUEUE_SIZE) -> asyncio.Queue[dict | None]:
        queue: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=maxsize)
        self._queues.add(queue)
        return queue

    def unsubscribe_queue(self, queue: asyncio.Queue[dict | None]) -> None:
        self._queues.discard(queue)

    async def close(self) -> None:
        """Signal SSE subscribers to close and drop every listener."""
        for queue in self._queues:
            with contextlib.suppress(asyncio.QueueFull):
                queue.put_nowait(None)
        self._queues.clear()
        self._listeners.clear()


def _to_wire(payload: Any) -> Any:
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    if isinstance(payload, list):
        return [_to_wire(p) for p in payload]
    return payload
