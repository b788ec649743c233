from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    """Base model with camelCase aliases for JSON clients."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=lambda s: "".join(
            w if i == 0 else w.capitalize() for i, w in enumerate(s.split("_"))
        ),
        from_attributes=True,
    )


LogLevel = Literal["info", "warning", "error", "debug"]
LogCategory = Literal[
    "system",
    "provider",
    "user",
    "error",
    "api",
    "auth",
    "database",
    "network",
    "performance",
    "settings",
    "task",
    "update",
    "feature",
]


# --- Capture engine ---


class DebugConfigResponse(CamelModel):
    enabled: bool
    capture_console: bool
    capture_network: bool
    capture_errors: bool
    terminal_debounce_ms: int


class UpdateDebugConfigRequest(CamelModel):
    enabled: bool | None = None
    capture_console: bool | None = None
    capture_network: bool | None = None
    capture_errors: bool | None = None
    terminal_debounce_ms: int | None = None


class UserActionRequest(CamelModel):
    action: str
    metadata: dict[str, Any] = {}


class TerminalLogRequest(CamelModel):
    text: str


class ExportResponse(CamelModel):
    json_path: str
    text_path: str


# --- Event log ---


class CreateLogRequest(CamelModel):
    level: LogLevel = "info"
    category: LogCategory
    message: str
    component: str | None = None
    action: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None
    duration: float | None = None
    status_code: int | None = None


class LogEntryResponse(CamelModel):
    id: str
    timestamp: str
    level: str
    category: str
    message: str
    component: str | None = None
    action: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None
    duration: float | None = None
    status_code: int | None = None
    read: bool = False


class LogListResponse(CamelModel):
    entries: list[LogEntryResponse]
    unread_count: int


# --- Health ---


class ProviderTargetRequest(CamelModel):
    provider: str
    base_url: str


class StartMonitoringRequest(CamelModel):
    providers: list[ProviderTargetRequest]
    interval_secs: float | None = None


class HealthStatusResponse(CamelModel):
    provider: str
    base_url: str
    status: str
    response_time_ms: float | None = None
    available_models: list[str] | None = None
    version: str | None = None
    last_checked: str | None = None
    error: str | None = None


class MonitoringResponse(CamelModel):
    monitoring: bool
    providers: list[str] = []
    interval_secs: float | None = None


# --- Connection ---


class ConnectionStatusResponse(CamelModel):
    connected: bool
    latency_ms: float | None = None
    last_checked: str | None = None
    issue: str | None = None
    url: str | None = None
    error: str | None = None
    acknowledged_issue: str | None = None
    should_alert: bool = False
