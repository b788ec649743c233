from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..runtime import TelemetryRuntime
from ..schemas import (
    DebugConfigResponse,
    ExportResponse,
    TerminalLogRequest,
    UpdateDebugConfigRequest,
    UserActionRequest,
)
from ..services.capture import serialize_snapshot
from .deps import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/debug-log", tags=["debug-log"])


@router.get("")
async def get_debug_log(runtime: TelemetryRuntime = Depends(get_runtime)):
    return runtime.capture.get_debug_log().to_dict()


@router.delete("", status_code=204)
async def clear_debug_log(runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.capture.clear()


@router.get("/config", response_model=DebugConfigResponse)
async def get_debug_config(runtime: TelemetryRuntime = Depends(get_runtime)):
    return DebugConfigResponse.model_validate(runtime.capture.config)


@router.patch("/config", response_model=DebugConfigResponse)
async def update_debug_config(
    req: UpdateDebugConfigRequest, runtime: TelemetryRuntime = Depends(get_runtime)
):
    updated = runtime.capture.update_config(**req.model_dump(exclude_none=True))
    return DebugConfigResponse.model_validate(updated)


@router.post("/user-actions", status_code=201)
async def capture_user_action(req: UserActionRequest, runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.capture.capture_user_action(req.action, req.metadata)
    return {"captured": True}


@router.post("/terminal", status_code=202)
async def capture_terminal_log(req: TerminalLogRequest, runtime: TelemetryRuntime = Depends(get_runtime)):
    runtime.capture.capture_terminal_log(req.text)
    return {"accepted": True}


@router.get("/download")
async def download_debug_log(
    format: Literal["json", "text"] = "json",
    runtime: TelemetryRuntime = Depends(get_runtime),
):
    """Return the snapshot as a file attachment."""
    try:
        data, text = serialize_snapshot(runtime.capture.get_debug_log())
    except (TypeError, ValueError) as e:
        logger.exception("Failed to serialize debug log")
        raise HTTPException(status_code=500, detail=f"Failed to export debug log: {e}") from e

    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    if format == "text":
        content, media_type, ext = text, "text/plain", "txt"
    else:
        content, media_type, ext = data, "application/json", "json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="debug-log-{stamp}.{ext}"'},
    )


@router.post("/export", response_model=ExportResponse)
async def export_debug_log(filename: str | None = None, runtime: TelemetryRuntime = Depends(get_runtime)):
    """Write the JSON and text exports into the configured export directory."""
    try:
        json_path, text_path = runtime.capture.download_debug_log(filename)
    except (OSError, TypeError, ValueError) as e:
        logger.exception("Failed to export debug log")
        raise HTTPException(status_code=500, detail=f"Failed to export debug log: {e}") from e
    return ExportResponse(json_path=str(json_path), text_path=str(text_path))
