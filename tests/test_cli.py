"""Tests for the command line entry point."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from appwatch.__main__ import _parse_args, main
from appwatch.services.connection_monitor import ConnectionMonitor, ConnectionStatus
from appwatch.services.health_monitor import HealthMonitor, HealthStatus


def test_parse_serve_defaults():
    args = _parse_args(["serve"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8000


def test_parse_check_health():
    args = _parse_args(["check-health", "ollama", "http://localhost:11434", "--timeout", "2.5"])
    assert args.provider == "ollama"
    assert args.base_url == "http://localhost:11434"
    assert args.timeout == 2.5


def test_command_is_required():
    with pytest.raises(SystemExit):
        _parse_args([])


def test_check_health_healthy(capsys):
    status = HealthStatus("ollama", "http://localhost:11434", status="healthy", available_models=["llama3"])
    with patch.object(HealthMonitor, "perform_health_check", AsyncMock(return_value=status)) as check:
        code = main(["check-health", "ollama", "http://localhost:11434"])

    assert code == 0
    check.assert_awaited_once_with("ollama", "http://localhost:11434")
    out = json.loads(capsys.readouterr().out)
    assert out["status"] == "healthy"
    assert out["availableModels"] == ["llama3"]


def test_check_health_unhealthy(capsys):
    status = HealthStatus("ollama", "http://localhost:11434", status="unhealthy", error="HTTP 503")
    with patch.object(HealthMonitor, "perform_health_check", AsyncMock(return_value=status)):
        code = main(["check-health", "ollama", "http://localhost:11434"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["error"] == "HTTP 503"


def test_check_connection(capsys):
    status = ConnectionStatus(connected=False, issue="disconnected", error="Host reports offline")
    with patch.object(ConnectionMonitor, "check_connection", AsyncMock(return_value=status)):
        code = main(["check-connection"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["issue"] == "disconnected"
