from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from appwatch.config import config
from appwatch.main import app
from appwatch.services.capture import CaptureEngine, DebugConfig
from appwatch.services.events import EventBus


class Recorder:
    """Event listener that remembers every payload it receives."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, payload: Any) -> None:
        self.events.append(payload)


def mock_client_factory(handler: Callable) -> Callable[[], httpx.AsyncClient]:
    """Client factory whose clients answer every request with *handler*."""
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Point the stores at a fresh temp directory and keep monitors quiet."""
    original = {
        "data_dir": config.data_dir,
        "export_dir": config.export_dir,
        "connection_monitoring": config.connection_monitoring,
        "health_providers": config.health_providers,
    }
    config.data_dir = str(tmp_path / "data")
    config.export_dir = ""
    config.connection_monitoring = False
    config.health_providers = {}
    yield tmp_path / "data"
    for key, value in original.items():
        setattr(config, key, value)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def engine():
    """Capture engine that is always unhooked after the test."""
    e = CaptureEngine(DebugConfig(terminal_debounce_ms=20))
    yield e
    e.disable()


@pytest.fixture
def client():
    """TestClient running the full application lifespan."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def runtime(client):
    return client.app.state.runtime
