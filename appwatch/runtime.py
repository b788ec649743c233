"""Builds and owns the telemetry components of one application."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from . import store
from .config import AppConfig
from .config import config as default_config
from .services.capture import CaptureEngine, DebugConfig
from .services.connection_monitor import ConnectionMonitor, ConnectionStatus
from .services.event_log import EventLogStore
from .services.events import CONNECTION_CHANGED, STATUS_CHANGED, EventBus
from .services.health_monitor import STATUS_HEALTHY, HealthMonitor, HealthStatus, ProviderTarget

logger = logging.getLogger(__name__)


@dataclass
class TelemetryRuntime:
    config: AppConfig
    bus: EventBus
    capture: CaptureEngine
    event_log: EventLogStore
    health: HealthMonitor
    connection: ConnectionMonitor
    _unsubscribe: list[Callable[[], None]] = field(default_factory=list, repr=False)

    async def start(self) -> None:
        """Enable capture and start the monitors configured to run."""
        self.capture.enable()
        if self.config.health_providers:
            self.health.start_monitoring(
                [ProviderTarget(name, url) for name, url in self.config.health_providers.items()]
            )
        if self.config.connection_monitoring:
            self.connection.start_monitoring()

    async def stop(self) -> None:
        self.health.stop_monitoring()
        self.connection.stop_monitoring()
        self.capture.disable()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        await self.bus.close()

    def _record_health_change(self, status: HealthStatus) -> None:
        message = f"Provider {status.provider} is {status.status}"
        if status.error:
            message += f": {status.error}"
        self.event_log.log_provider(
            status.provider,
            message,
            level="info" if status.status == STATUS_HEALTHY else "warning",
            duration=status.response_time_ms,
            metadata={"baseUrl": status.base_url, "status": status.status},
        )

    def _record_connection_change(self, status: ConnectionStatus) -> None:
        self.event_log.log_network_status(
            status.connected,
            status.latency_ms,
            metadata={"issue": status.issue},
        )


def build_runtime(cfg: AppConfig | None = None) -> TelemetryRuntime:
    cfg = cfg or default_config
    bus = EventBus()
    kv = store.state_store(cfg.data_path)

    capture = CaptureEngine(
        DebugConfig(
            enabled=cfg.capture_enabled,
            capture_console=cfg.capture_console,
            capture_network=cfg.capture_network,
            capture_errors=cfg.capture_errors,
            terminal_debounce_ms=cfg.terminal_debounce_ms,
        ),
        capacity=cfg.buffer_size,
        kv=kv,
        export_dir=cfg.export_path,
    )
    event_log = EventLogStore(store.event_log_store(cfg.data_path), kv, bus, max_logs=cfg.max_logs)
    health = HealthMonitor(
        bus,
        timeout=cfg.health_check_timeout_secs,
        interval=cfg.health_check_interval_secs,
    )
    connection = ConnectionMonitor(
        bus,
        kv,
        urls=cfg.connection_check_urls,
        interval=cfg.connection_check_interval_secs,
        timeout=cfg.connection_timeout_secs,
        latency_threshold_ms=cfg.connection_latency_threshold_ms,
    )

    runtime = TelemetryRuntime(cfg, bus, capture, event_log, health, connection)
    runtime._unsubscribe.append(bus.subscribe(STATUS_CHANGED, runtime._record_health_change))
    runtime._unsubscribe.append(bus.subscribe(CONNECTION_CHANGED, runtime._record_connection_change))
    return runtime
