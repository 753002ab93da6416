from unittest.mock import AsyncMock

import httpx
import pytest

from src.clients import network_monitor
from src.clients.network_monitor import (
    ConnectionQuality,
    ConnectionQualityMonitor,
    ConnectivityEventSource,
    check_network_connection,
    recommended_timeout,
)


@pytest.mark.parametrize(
    ("connection_type", "timeout"),
    [
        ("slow-2g", 60.0),
        ("2g", 45.0),
        ("3g", 30.0),
        ("4g", 20.0),
        ("5g", 20.0),
        ("unknown", 30.0),
        (None, 30.0),
    ],
)
def test_recommended_timeout_table(connection_type: str | None, timeout: float) -> None:
    assert recommended_timeout(connection_type) == timeout


def test_construction_reads_current_state() -> None:
    source = ConnectivityEventSource(online=False, connection_type="2g")
    monitor = ConnectionQualityMonitor(source)

    assert monitor.state.online is False
    assert monitor.state.slow is True
    assert monitor.quality == ConnectionQuality.SLOW
    assert monitor.recommended_timeout() == 45.0


def test_reacts_to_connectivity_events() -> None:
    source = ConnectivityEventSource()
    monitor = ConnectionQualityMonitor(source)
    assert monitor.quality == ConnectionQuality.UNKNOWN

    source.set_online(False)
    assert monitor.state.online is False

    source.set_online(True)
    assert monitor.state.online is True

    source.set_connection_type("4g")
    assert monitor.quality == ConnectionQuality.NORMAL
    assert monitor.state.slow is False
    assert monitor.recommended_timeout() == 20.0

    source.set_connection_type("slow-2g")
    assert monitor.state.slow is True
    assert monitor.recommended_timeout() == 60.0


def test_close_releases_every_subscription() -> None:
    source = ConnectivityEventSource()
    monitor = ConnectionQualityMonitor(source)
    assert source.listener_count() == 3

    monitor.close()
    assert source.listener_count() == 0
    assert monitor.closed

    # 释放后不再响应事件
    source.set_online(False)
    assert monitor.state.online is True

    # 重复关闭无副作用
    monitor.close()


def test_context_manager_releases_on_exit() -> None:
    source = ConnectivityEventSource()
    with ConnectionQualityMonitor(source) as monitor:
        assert source.listener_count() == 3
        source.set_connection_type("3g")
        assert monitor.state.quality_tag == "3g"
    assert source.listener_count() == 0


def test_listener_errors_do_not_break_other_listeners() -> None:
    source = ConnectivityEventSource()
    received: list[str] = []

    def broken() -> None:
        raise RuntimeError("listener failure")

    source.subscribe("offline", broken)
    source.subscribe("offline", lambda: received.append("offline"))
    source.set_online(False)

    assert received == ["offline"]


def test_repeated_state_does_not_emit() -> None:
    source = ConnectivityEventSource(online=True)
    events: list[str] = []
    source.subscribe("online", lambda: events.append("online"))

    source.set_online(True)
    assert events == []


@pytest.mark.asyncio
async def test_check_network_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(**kwargs)

    monkeypatch.setattr("src.clients.http_client.httpx.AsyncClient", client_factory)

    assert await check_network_connection("http://diagram.test/") is True
    assert requests[0].method == "HEAD"
    assert requests[0].url.path == "/health"


@pytest.mark.asyncio
async def test_check_network_connection_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    head = AsyncMock(side_effect=httpx.ConnectError("connection refused"))

    class _Client:
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def head(self, url: str):
            return await head(url)

    monkeypatch.setattr(
        network_monitor.HTTPClientPool, "get_temp_client", lambda **kwargs: _Client()
    )

    assert await check_network_connection("http://diagram.test") is False
    head.assert_awaited_once_with("http://diagram.test/health")
