from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..runtime import TelemetryRuntime
from ..schemas import CreateLogRequest, LogCategory, LogEntryResponse, LogLevel, LogListResponse
from .deps import get_runtime

router = APIRouter(prefix="/api/v1/event-log", tags=["event-log"])


@router.get("", response_model=LogListResponse)
async def list_logs(
    level: LogLevel | None = None,
    category: LogCategory | None = None,
    component: str | None = None,
    since: str | None = None,
    runtime: TelemetryRuntime = Depends(get_runtime),
):
    try:
        entries = runtime.event_log.get_filtered_logs(
            level=level, category=category, component=component, since=since
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid 'since' timestamp: {since}") from e
    return LogListResponse(
        entries=[LogEntryResponse.model_validate(e) for e in entries],
        unread_count=runtime.event_log.get_unread_count(),
    )


@router.post("", response_model=LogEntryResponse, status_code=201)
async def create_log(req: CreateLogRequest, runtime: TelemetryRuntime = Depends(get_runtime)):
    fields = req.model_dump(exclude={"level", "category", "message"})
    entry = runtime.event_log.log(req.level, req.category, req.message, **fields)
    return LogEntryResponse.model_validate(entry)


@router.post("/read-all")
async def mark_all_as_read(runtime: TelemetryRuntime = Depends(get_runtime)):
    return {"marked": runtime.event_log.mark_all_as_read()}


@router.post("/{log_id}/read")
async def mark_as_read(log_id: str, runtime: TelemetryRuntime = Depends(get_runtime)):
    if not runtime.event_log.mark_as_read(log_id):
        raise HTTPException(status_code=404, detail="Log entry not found")
    return {"id": log_id, "read": True}


@router.get("/export")
async def export_logs(runtime: TelemetryRuntime = Depends(get_runtime)):
    return Response(
        content=runtime.event_log.export_logs(),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="event-log.json"'},
    )


@router.delete("", status_code=204)
async def clear_logs(runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.event_log.clear()
