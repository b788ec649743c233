from __future__ import annotations

from fastapi import APIRouter, Depends

from ..runtime import TelemetryRuntime
from ..schemas import ConnectionStatusResponse
from ..services.connection_monitor import ConnectionMonitor
from .deps import get_runtime

router = APIRouter(prefix="/api/v1/connection", tags=["connection"])


def _to_response(monitor: ConnectionMonitor) -> ConnectionStatusResponse:
    status = monitor.status
    return ConnectionStatusResponse(
        connected=status.connected,
        latency_ms=status.latency_ms,
        last_checked=status.last_checked,
        issue=status.issue,
        url=status.url,
        error=status.error,
        acknowledged_issue=monitor.acknowledged_issue,
        should_alert=monitor.should_alert,
    )


@router.get("", response_model=ConnectionStatusResponse)
async def get_connection(runtime: TelemetryRuntime = Depends(get_runtime)):
    return _to_response(runtime.connection)


@router.post("/check", response_model=ConnectionStatusResponse)
async def check_connection(runtime: TelemetryRuntime = Depends(get_runtime)):
    await runtime.connection.check_connection()
    return _to_response(runtime.connection)


@router.post("/acknowledge", response_model=ConnectionStatusResponse)
async def acknowledge_issue(runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.connection.acknowledge_issue()
    return _to_response(runtime.connection)


@router.post("/reset-acknowledgements", response_model=ConnectionStatusResponse)
async def reset_acknowledgements(runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.connection.reset_acknowledgements()
    return _to_response(runtime.connection)
