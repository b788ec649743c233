"""Periodic health probes for HTTP-reachable model providers.

Each provider moves ``unknown -> checking -> healthy|unhealthy -> checking``.
A ``statusChanged`` event is published only when a check resolves to a
different status than the provider's previous resolved status.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

import httpx

from .events import STATUS_CHANGED, EventBus

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = 30.0
HEALTH_CHECK_TIMEOUT = 10.0

STATUS_UNKNOWN = "unknown"
STATUS_CHECKING = "checking"
STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ProviderTarget:
    provider: str
    base_url: str


@dataclass(frozen=True)
class HealthStatus:
    provider: str
    base_url: str
    status: str = STATUS_UNKNOWN
    response_time_ms: float | None = None
    available_models: list[str] | None = None
    version: str | None = None
    last_checked: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "baseUrl": self.base_url,
            "status": self.status,
            "responseTimeMs": self.response_time_ms,
            "availableModels": list(self.available_models) if self.available_models is not None else None,
            "version": self.version,
            "lastChecked": self.last_checked,
            "error": self.error,
        }


# --- Provider probes -------------------------------------------------------


def _names(items: Any, *keys: str) -> list[str] | None:
    if not isinstance(items, list):
        return None
    names = []
    for item in items:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict):
            for key in keys:
                if isinstance(item.get(key), str):
                    names.append(item[key])
                    break
    return names


def _ollama_models(body: dict[str, Any]) -> list[str] | None:
    return _names(body.get("models"), "name", "model")


def _openai_models(body: dict[str, Any]) -> list[str] | None:
    return _names(body.get("data"), "id")


def _generic_models(body: dict[str, Any]) -> list[str] | None:
    return _names(body.get("models"), "name", "id")


@dataclass(frozen=True)
class ProbeSpec:
    path: str
    models: Callable[[dict[str, Any]], list[str] | None]


OLLAMA_PROBE = ProbeSpec("/api/tags", _ollama_models)
OPENAI_COMPATIBLE_PROBE = ProbeSpec("/v1/models", _openai_models)
GENERIC_PROBE = ProbeSpec("/health", _generic_models)

PROVIDER_PROBES: dict[str, ProbeSpec] = {
    "ollama": OLLAMA_PROBE,
    "openai": OPENAI_COMPATIBLE_PROBE,
    "lmstudio": OPENAI_COMPATIBLE_PROBE,
    "vllm": OPENAI_COMPATIBLE_PROBE,
    "localai": OPENAI_COMPATIBLE_PROBE,
    "llamacpp": OPENAI_COMPATIBLE_PROBE,
}


def probe_for(provider: str) -> ProbeSpec:
    """Pick the probe by provider name, e.g. ``ollama`` or ``ollama-gpu``."""
    key = provider.lower().replace("-", "").replace("_", "").replace(" ", "")
    if key in PROVIDER_PROBES:
        return PROVIDER_PROBES[key]
    for name, spec in PROVIDER_PROBES.items():
        if name in key:
            return spec
    return GENERIC_PROBE


def probe_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    # OpenAI-style base URLs often already end in /v1
    if base.endswith("/v1") and path.startswith("/v1/"):
        path = path[3:]
    return base + path


def _as_target(item: ProviderTarget | tuple[str, str]) -> ProviderTarget:
    if isinstance(item, ProviderTarget):
        return item
    provider, base_url = item
    return ProviderTarget(provider, base_url)


def _default_client() -> httpx.AsyncClient:
    # The monitor enforces its own deadline around the whole probe
    return httpx.AsyncClient(timeout=None, follow_redirects=True)


class HealthMonitor:
    def __init__(
        self,
        bus: EventBus | None = None,
        *,
        timeout: float = HEALTH_CHECK_TIMEOUT,
        interval: float = HEALTH_CHECK_INTERVAL,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.timeout = timeout
        self.interval = interval
        self._bus = bus
        self._client_factory = client_factory or _default_client
        self._targets: dict[str, ProviderTarget] = {}
        self._statuses: dict[str, HealthStatus] = {}
        self._resolved: dict[str, str] = {}
        self._task: asyncio.Task | None = None
        # Bumped on every start/stop; results from an older generation are dropped
        self._generation = 0

    @property
    def monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def providers(self) -> list[ProviderTarget]:
        return list(self._targets.values())

    def start_monitoring(
        self,
        providers: Iterable[ProviderTarget | tuple[str, str]],
        interval: float | None = None,
    ) -> None:
        """(Re)register *providers* and restart the polling timer.

        Must be called from a running event loop. The first round of checks
        starts immediately.
        """
        self._cancel_timer()
        self._generation += 1

        targets = {t.provider: t for t in map(_as_target, providers)}
        for provider in list(self._statuses):
            if provider not in targets:
                del self._statuses[provider]
                self._resolved.pop(provider, None)
        for target in targets.values():
            current = self._statuses.get(target.provider)
            if current is None or current.base_url != target.base_url:
                self._statuses[target.provider] = HealthStatus(target.provider, target.base_url)
                self._resolved[target.provider] = STATUS_UNKNOWN
        self._targets = targets

        if interval is not None:
            self.interval = interval
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation, self.interval))
        logger.info(
            "Health monitoring started for %s (every %gs)",
            ", ".join(targets) or "no providers",
            self.interval,
        )

    def stop_monitoring(self) -> None:
        """Cancel the timer. Last known statuses are kept."""
        self._cancel_timer()
        self._generation += 1
        for provider, status in self._statuses.items():
            if status.status == STATUS_CHECKING:
                self._statuses[provider] = replace(
                    status, status=self._resolved.get(provider, STATUS_UNKNOWN)
                )
        logger.info("Health monitoring stopped")

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, generation: int, interval: float) -> None:
        try:
            while generation == self._generation:
                await self.check_all(generation)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            return

    async def check_all(self, generation: int | None = None) -> dict[str, HealthStatus]:
        """Check every registered provider concurrently."""
        targets = list(self._targets.values())
        results = await asyncio.gather(
            *(self._check(t.provider, t.base_url, generation) for t in targets),
            return_exceptions=True,
        )
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.error("Health check for %s failed unexpectedly", target.provider, exc_info=result)
        return self.get_all_health_statuses()

    async def perform_health_check(self, provider: str, base_url: str) -> HealthStatus:
        """Probe one provider now and record the result."""
        return await self._check(provider, base_url, None)

    async def _check(self, provider: str, base_url: str, generation: int | None) -> HealthStatus:
        if generation is None:
            generation = self._generation
        if generation != self._generation:
            return self._statuses.get(provider) or HealthStatus(provider, base_url)

        previous = self._statuses.get(provider)
        if previous is None:
            self._statuses[provider] = HealthStatus(provider, base_url, status=STATUS_CHECKING)
        else:
            self._statuses[provider] = replace(previous, base_url=base_url, status=STATUS_CHECKING)

        result = await self._probe(provider, base_url)

        if generation != self._generation:
            logger.debug("Discarding stale health result for %s", provider)
            return result

        self._statuses[provider] = result
        before = self._resolved.get(provider, STATUS_UNKNOWN)
        self._resolved[provider] = result.status
        if result.status != before:
            if result.status == STATUS_HEALTHY:
                logger.info("Provider %s is healthy (%.0fms)", provider, result.response_time_ms or 0)
            else:
                logger.warning("Provider %s is %s: %s", provider, result.status, result.error)
            if self._bus is not None:
                self._bus.emit(STATUS_CHANGED, result)
        return result

    async def _probe(self, provider: str, base_url: str) -> HealthStatus:
        spec = probe_for(provider)
        url = probe_url(base_url, spec.path)
        start = time.perf_counter()

        def unhealthy(error: str) -> HealthStatus:
            return HealthStatus(
                provider=provider,
                base_url=base_url,
                status=STATUS_UNHEALTHY,
                response_time_ms=round((time.perf_counter() - start) * 1000, 1),
                last_checked=_now(),
                error=error,
            )

        try:
            response = await asyncio.wait_for(self._get(url), timeout=self.timeout)
        except TimeoutError:
            return unhealthy(f"Health check timed out after {self.timeout:g}s")
        except Exception as e:
            return unhealthy(str(e) or type(e).__name__)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        if not response.is_success:
            return unhealthy(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = None
        models = spec.models(body) if isinstance(body, dict) else None
        version = body.get("version") if isinstance(body, dict) else None

        return HealthStatus(
            provider=provider,
            base_url=base_url,
            status=STATUS_HEALTHY,
            response_time_ms=elapsed_ms,
            available_models=models,
            version=version if isinstance(version, str) else None,
            last_checked=_now(),
        )

    async def _get(self, url: str) -> httpx.Response:
        async with self._client_factory() as client:
            return await client.get(url)

    def get_all_health_statuses(self) -> dict[str, HealthStatus]:
        return dict(self._statuses)

    def get_health_status(self, provider: str) -> HealthStatus | None:
        return self._statuses.get(provider)
