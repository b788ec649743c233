from __future__ import annotations

from fastapi import Request

from ..runtime import TelemetryRuntime


def get_runtime(request: Request) -> TelemetryRuntime:
    """The runtime built by the application lifespan."""
    return request.app.state.runtime
