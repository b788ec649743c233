"""Tests for network reachability monitoring and issue acknowledgment."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from appwatch.services.connection_monitor import (
    ACKNOWLEDGED_ISSUE_KEY,
    ISSUE_DISCONNECTED,
    ISSUE_HIGH_LATENCY,
    ConnectionMonitor,
    derive_issue,
)
from appwatch.services.events import CONNECTION_CHANGED
from appwatch.store import MemoryKeyValueStore

from .conftest import mock_client_factory

URLS = ["http://primary.test/generate_204", "http://fallback.test/"]


class Network:
    """Scriptable mock network: each host can be up, down or slow."""

    def __init__(self) -> None:
        self.down: set[str] = set()
        self.delay = 0.0
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.down:
            raise httpx.ConnectError("Name or service not known", request=request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(204)


@pytest.fixture
def network():
    return Network()


def _monitor(network, bus=None, kv=None, **kwargs):
    kwargs.setdefault("latency_threshold_ms", 1000.0)
    return ConnectionMonitor(
        bus,
        kv,
        urls=URLS,
        is_online=kwargs.pop("is_online", lambda: True),
        client_factory=mock_client_factory(network),
        **kwargs,
    )


@pytest.mark.parametrize(
    "connected, latency, expected",
    [
        (False, None, ISSUE_DISCONNECTED),
        (False, 5000.0, ISSUE_DISCONNECTED),
        (True, 1000.0, None),
        (True, 1000.1, ISSUE_HIGH_LATENCY),
        (True, None, None),
    ],
)
def test_derive_issue(connected, latency, expected):
    assert derive_issue(connected, latency, 1000.0) == expected


def test_initial_status_assumes_online(network):
    monitor = _monitor(network)
    assert monitor.status.connected is True
    assert monitor.issue is None
    assert monitor.should_alert is False


# ── Checks ────────────────────────────────────────────────────


class TestCheckConnection:
    @pytest.mark.asyncio
    async def test_offline_host_skips_probe(self, network):
        monitor = _monitor(network, is_online=lambda: False)

        status = await monitor.check_connection()

        assert network.requests == []
        assert status.connected is False
        assert status.issue == ISSUE_DISCONNECTED
        assert status.latency_ms is None
        assert monitor.should_alert is True

    @pytest.mark.asyncio
    async def test_uses_head_against_first_url(self, network):
        monitor = _monitor(network)

        status = await monitor.check_connection()

        assert [r.method for r in network.requests] == ["HEAD"]
        assert str(network.requests[0].url) == URLS[0]
        assert status.connected is True
        assert status.issue is None
        assert status.url == URLS[0]
        assert status.latency_ms is not None

    @pytest.mark.asyncio
    async def test_falls_back_to_next_url(self, network):
        network.down.add("primary.test")
        monitor = _monitor(network)

        status = await monitor.check_connection()

        assert [r.url.host for r in network.requests] == ["primary.test", "fallback.test"]
        assert status.connected is True
        assert status.url == URLS[1]

    @pytest.mark.asyncio
    async def test_all_urls_failing_is_disconnected(self, network):
        network.down.update({"primary.test", "fallback.test"})
        monitor = _monitor(network)

        status = await monitor.check_connection()

        assert status.connected is False
        assert status.issue == ISSUE_DISCONNECTED
        assert URLS[0] in status.error
        assert URLS[1] in status.error

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, network):
        network.delay = 1.0
        monitor = _monitor(network, timeout=0.02)

        status = await monitor.check_connection()

        assert status.connected is False
        assert "timed out" in status.error
        assert len(network.requests) == 2

    @pytest.mark.asyncio
    async def test_slow_response_is_high_latency(self, network):
        network.delay = 0.05
        monitor = _monitor(network, latency_threshold_ms=5.0)

        status = await monitor.check_connection()

        assert status.connected is True
        assert status.latency_ms > 5.0
        assert status.issue == ISSUE_HIGH_LATENCY


# ── Acknowledgment ────────────────────────────────────────────


class TestAcknowledgment:
    def test_nothing_to_acknowledge(self, network):
        monitor = _monitor(network)
        assert monitor.acknowledge_issue() is False
        assert monitor.acknowledged_issue is None

    @pytest.mark.asyncio
    async def test_acknowledged_issue_stays_silent_until_resolved(self, network):
        network.delay = 0.05
        monitor = _monitor(network, latency_threshold_ms=5.0)

        await monitor.check_connection()
        assert monitor.should_alert is True

        assert monitor.acknowledge_issue() is True
        assert monitor.should_alert is False

        await monitor.check_connection()
        assert monitor.issue == ISSUE_HIGH_LATENCY
        assert monitor.should_alert is False

        network.delay = 0.0
        monitor.latency_threshold_ms = 1000.0
        await monitor.check_connection()
        assert monitor.issue is None
        assert monitor.acknowledged_issue is None

        network.delay = 0.05
        monitor.latency_threshold_ms = 5.0
        await monitor.check_connection()
        assert monitor.should_alert is True

    @pytest.mark.asyncio
    async def test_different_issue_still_alerts(self, network):
        network.delay = 0.05
        monitor = _monitor(network, latency_threshold_ms=5.0)
        await monitor.check_connection()
        monitor.acknowledge_issue()

        network.down.update({"primary.test", "fallback.test"})
        await monitor.check_connection()

        assert monitor.issue == ISSUE_DISCONNECTED
        assert monitor.should_alert is True

    @pytest.mark.asyncio
    async def test_reset_acknowledgements(self, network):
        monitor = _monitor(network, is_online=lambda: False)
        await monitor.check_connection()
        monitor.acknowledge_issue()

        monitor.reset_acknowledgements()

        assert monitor.acknowledged_issue is None
        assert monitor.should_alert is True

    @pytest.mark.asyncio
    async def test_acknowledgment_is_persisted(self, network):
        kv = MemoryKeyValueStore()
        offline = _monitor(network, kv=kv, is_online=lambda: False)
        await offline.check_connection()
        offline.acknowledge_issue()
        assert kv.get(ACKNOWLEDGED_ISSUE_KEY) == ISSUE_DISCONNECTED

        restarted = _monitor(network, kv=kv)
        assert restarted.acknowledged_issue == ISSUE_DISCONNECTED

        await restarted.check_connection()
        assert restarted.acknowledged_issue is None
        assert kv.get(ACKNOWLEDGED_ISSUE_KEY) is None

    def test_unknown_persisted_value_is_ignored(self, network):
        kv = MemoryKeyValueStore()
        kv.set(ACKNOWLEDGED_ISSUE_KEY, "solar-flare")
        assert _monitor(network, kv=kv).acknowledged_issue is None


# ── Notifications / lifecycle ─────────────────────────────────


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_emits_only_on_change(self, network, bus, recorder):
        bus.subscribe(CONNECTION_CHANGED, recorder)
        monitor = _monitor(network, bus)

        await monitor.check_connection()
        network.down.update({"primary.test", "fallback.test"})
        await monitor.check_connection()
        await monitor.check_connection()
        network.down.clear()
        await monitor.check_connection()

        assert [(s.connected, s.issue) for s in recorder.events] == [
            (False, ISSUE_DISCONNECTED),
            (True, None),
        ]

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_result(self, network):
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            entered.set()
            await gate.wait()
            raise httpx.ConnectError("unreachable", request=request)

        monitor = ConnectionMonitor(
            urls=URLS[:1], is_online=lambda: True, client_factory=mock_client_factory(handler)
        )
        task = asyncio.create_task(monitor.check_connection())
        await entered.wait()
        monitor.stop_monitoring()
        gate.set()
        result = await task

        assert result.connected is False
        assert monitor.status.connected is True
        assert monitor.status.last_checked is None

    @pytest.mark.asyncio
    async def test_polls_until_stopped(self, network):
        monitor = _monitor(network, interval=0.05)
        monitor.start_monitoring()
        assert monitor.monitoring
        await asyncio.sleep(0.18)
        monitor.stop_monitoring()
        count = len(network.requests)
        await asyncio.sleep(0.1)

        assert count >= 3
        assert len(network.requests) == count
        assert not monitor.monitoring
