from __future__ import annotations

from fastapi import APIRouter, Depends

from ..runtime import TelemetryRuntime
from ..schemas import (
    HealthStatusResponse,
    MonitoringResponse,
    ProviderTargetRequest,
    StartMonitoringRequest,
)
from ..services.health_monitor import ProviderTarget
from .deps import get_runtime

router = APIRouter(prefix="/api/v1/health-status", tags=["health"])


@router.get("", response_model=dict[str, HealthStatusResponse])
async def get_health_statuses(runtime: TelemetryRuntime = Depends(get_runtime)):
    return {
        provider: HealthStatusResponse.model_validate(status)
        for provider, status in runtime.health.get_all_health_statuses().items()
    }


@router.post("/check", response_model=HealthStatusResponse)
async def check_provider(req: ProviderTargetRequest, runtime: TelemetryRuntime = Depends(get_runtime)):
    """Probe one provider now. Probe failures come back as an unhealthy status."""
    status = await runtime.health.perform_health_check(req.provider, req.base_url)
    return HealthStatusResponse.model_validate(status)


@router.get("/monitoring", response_model=MonitoringResponse)
async def get_monitoring(runtime: TelemetryRuntime = Depends(get_runtime)):
    return MonitoringResponse(
        monitoring=runtime.health.monitoring,
        providers=[t.provider for t in runtime.health.providers],
        interval_secs=runtime.health.interval,
    )


@router.post("/monitoring", response_model=MonitoringResponse)
async def start_monitoring(req: StartMonitoringRequest, runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.health.start_monitoring(
        [ProviderTarget(p.provider, p.base_url) for p in req.providers],
        interval=req.interval_secs,
    )
    return MonitoringResponse(
        monitoring=True,
        providers=[p.provider for p in req.providers],
        interval_secs=runtime.health.interval,
    )


@router.delete("/monitoring", response_model=MonitoringResponse)
async def stop_monitoring(runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.health.stop_monitoring()
    return MonitoringResponse(monitoring=False)
