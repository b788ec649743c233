"""Network reachability and latency monitoring."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from ..config import DEFAULT_CONNECTION_CHECK_URLS
from ..store import KeyValueStore, StorageError
from .events import CONNECTION_CHANGED, EventBus

logger = logging.getLogger(__name__)

CONNECTION_CHECK_INTERVAL = 10.0
CONNECTION_TIMEOUT = 5.0
HIGH_LATENCY_THRESHOLD_MS = 1000.0

ISSUE_DISCONNECTED = "disconnected"
ISSUE_HIGH_LATENCY = "high-latency"

ACKNOWLEDGED_ISSUE_KEY = "connection_acknowledged_issue"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def derive_issue(connected: bool, latency_ms: float | None, threshold_ms: float) -> str | None:
    if not connected:
        return ISSUE_DISCONNECTED
    if latency_ms is not None and latency_ms > threshold_ms:
        return ISSUE_HIGH_LATENCY
    return None


def host_reports_online() -> bool:
    """True when the host has at least one non-loopback network interface."""
    try:
        names = [name for _, name in socket.if_nameindex()]
    except (AttributeError, OSError):
        # Interface listing not supported here; let the HTTP probe decide
        return True
    return any(not name.startswith("lo") for name in names)


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    latency_ms: float | None = None
    last_checked: str | None = None
    issue: str | None = None
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "latencyMs": self.latency_ms,
            "lastChecked": self.last_checked,
            "issue": self.issue,
            "url": self.url,
            "error": self.error,
        }


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=None, follow_redirects=False)


class ConnectionMonitor:
    """Tracks whether the network is reachable and how slow it is.

    An acknowledged issue stays silent (``should_alert`` is False) until the
    connection recovers; the same issue recurring after that alerts again.
    """

    def __init__(
        self,
        bus: EventBus | None = None,
        kv: KeyValueStore | None = None,
        *,
        urls: list[str] | None = None,
        interval: float = CONNECTION_CHECK_INTERVAL,
        timeout: float = CONNECTION_TIMEOUT,
        latency_threshold_ms: float = HIGH_LATENCY_THRESHOLD_MS,
        is_online: Callable[[], bool] = host_reports_online,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.urls = list(urls if urls is not None else DEFAULT_CONNECTION_CHECK_URLS)
        self.interval = interval
        self.timeout = timeout
        self.latency_threshold_ms = latency_threshold_ms
        self._bus = bus
        self._kv = kv
        self._is_online = is_online
        self._client_factory = client_factory or _default_client
        # Assume online until a check says otherwise
        self._status = ConnectionStatus(connected=True)
        self._acknowledged: str | None = self._load_acknowledged()
        self._task: asyncio.Task | None = None
        self._generation = 0

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def issue(self) -> str | None:
        return self._status.issue

    @property
    def acknowledged_issue(self) -> str | None:
        return self._acknowledged

    @property
    def should_alert(self) -> bool:
        return self.issue is not None and self.issue != self._acknowledged

    @property
    def monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- Acknowledgment ----------------------------------------------------

    def _load_acknowledged(self) -> str | None:
        if self._kv is None:
            return None
        try:
            value = self._kv.get(ACKNOWLEDGED_ISSUE_KEY)
        except StorageError:
            logger.warning("Acknowledgment store unavailable, keeping it in memory", exc_info=True)
            self._kv = None
            return None
        return value if value in (ISSUE_DISCONNECTED, ISSUE_HIGH_LATENCY) else None

    def _persist_acknowledged(self) -> None:
        if self._kv is None:
            return
        try:
            if self._acknowledged is None:
                self._kv.delete(ACKNOWLEDGED_ISSUE_KEY)
            else:
                self._kv.set(ACKNOWLEDGED_ISSUE_KEY, self._acknowledged)
        except StorageError:
            logger.warning("Acknowledgment store unavailable, keeping it in memory", exc_info=True)
            self._kv = None

    def acknowledge_issue(self) -> bool:
        """Silence the current issue until it clears. False if there is none."""
        if self.issue is None:
            return False
        self._acknowledged = self.issue
        self._persist_acknowledged()
        logger.info("Connection issue acknowledged: %s", self.issue)
        return True

    def reset_acknowledgements(self) -> None:
        self._acknowledged = None
        self._persist_acknowledged()

    # --- Checks ------------------------------------------------------------

    async def check_connection(self) -> ConnectionStatus:
        generation = self._generation
        status = await self._measure()
        if generation != self._generation:
            logger.debug("Discarding stale connection result")
            return status
        self._apply(status)
        return status

    async def _measure(self) -> ConnectionStatus:
        if not self._is_online():
            return ConnectionStatus(
                connected=False,
                last_checked=_now(),
                issue=ISSUE_DISCONNECTED,
                error="Host reports offline",
            )

        errors = []
        async with self._client_factory() as client:
            for url in self.urls:
                start = time.perf_counter()
                try:
                    await asyncio.wait_for(client.head(url), timeout=self.timeout)
                except TimeoutError:
                    errors.append(f"{url}: timed out after {self.timeout:g}s")
                    continue
                except Exception as e:
                    errors.append(f"{url}: {str(e) or type(e).__name__}")
                    continue
                latency_ms = round((time.perf_counter() - start) * 1000, 1)
                return ConnectionStatus(
                    connected=True,
                    latency_ms=latency_ms,
                    last_checked=_now(),
                    issue=derive_issue(True, latency_ms, self.latency_threshold_ms),
                    url=url,
                )

        return ConnectionStatus(
            connected=False,
            last_checked=_now(),
            issue=ISSUE_DISCONNECTED,
            error="; ".join(errors) or "No connection check URLs configured",
        )

    def _apply(self, status: ConnectionStatus) -> None:
        previous, self._status = self._status, status
        if status.issue is None and self._acknowledged is not None:
            self._acknowledged = None
            self._persist_acknowledged()

        if previous.connected == status.connected and previous.issue == status.issue:
            return
        if status.issue is None:
            logger.info("Connection restored (%.0fms via %s)", status.latency_ms or 0, status.url)
        else:
            logger.warning("Connection issue: %s (%s)", status.issue, status.error or f"{status.latency_ms}ms")
        if self._bus is not None:
            self._bus.emit(CONNECTION_CHANGED, status)

    # --- Timer -------------------------------------------------------------

    def start_monitoring(self, interval: float | None = None) -> None:
        """Start polling from the running event loop; restarts if already running."""
        self._cancel_timer()
        self._generation += 1
        if interval is not None:
            self.interval = interval
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation, self.interval))
        logger.info("Connection monitoring started (every %gs)", self.interval)

    def stop_monitoring(self) -> None:
        self._cancel_timer()
        self._generation += 1
        logger.info("Connection monitoring stopped")

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, generation: int, interval: float) -> None:
        try:
            while generation == self._generation:
                try:
                    await self.check_connection()
                except Exception:
                    logger.exception("Connection check failed")
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            return
