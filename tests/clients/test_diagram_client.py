import json

import httpx
import pytest

from src.clients.diagram_client import DiagramClient, DiagramRequestFailed
from src.clients.network_monitor import ConnectionQualityMonitor, ConnectivityEventSource
from src.services.orchestration.error_classifier import ClientErrorKind, ErrorCategory

BASE_URL = "http://diagram.test"


async def no_sleep(delay: float) -> None:
    return None


def build_client(handler, source: ConnectivityEventSource | None = None) -> DiagramClient:
    monitor = ConnectionQualityMonitor(source or ConnectivityEventSource(connection_type="4g"))
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DiagramClient(BASE_URL, monitor, http_client, sleep=no_sleep)


@pytest.mark.asyncio
async def test_generate_success() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/generate-diagram"
        assert json.loads(request.content) == {"prompt": "draw a login flow"}
        return httpx.Response(
            200,
            json={
                "status": "success",
                "message": "图表生成成功",
                "downloadUrl": f"{BASE_URL}/api/files/abc",
                "imageUrl": f"{BASE_URL}/api/files/def",
                "cached": False,
            },
        )

    client = build_client(handler)
    result = await client.generate("draw a login flow")

    assert result.download_url.endswith("/api/files/abc")
    assert result.image_url is not None
    assert result.cached is False


@pytest.mark.asyncio
async def test_success_without_download_url_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "success", "message": "图表生成成功"})

    client = build_client(handler)
    with pytest.raises(DiagramRequestFailed) as exc_info:
        await client.generate("draw a login flow")

    assert exc_info.value.status_code == 200
    assert exc_info.value.error_info.category == ErrorCategory.UNKNOWN
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_policy_uses_monitor_timeout() -> None:
    source = ConnectivityEventSource(connection_type="4g")
    client = build_client(lambda request: httpx.Response(200), source)
    assert client.current_policy().timeout == 20.0

    source.set_connection_type("2g")
    assert client.current_policy().timeout == 45.0


@pytest.mark.asyncio
async def test_rate_limited_response_is_classified() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            headers={"Retry-After": "42"},
            json={"status": "error", "message": "请求过于频繁", "code": "RATE_LIMIT_EXCEEDED"},
        )

    client = build_client(handler)
    with pytest.raises(DiagramRequestFailed) as exc_info:
        await client.generate("draw a login flow")

    info = exc_info.value.error_info
    assert info.category == ErrorCategory.CLIENT
    assert info.client_kind == ClientErrorKind.RATE_LIMITED
    assert info.retry_after == 42.0
    assert info.message == "请求过于频繁"
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_reported() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, json={"status": "error", "message": "稍后再试", "code": "X"})

    client = build_client(handler)
    with pytest.raises(DiagramRequestFailed) as exc_info:
        await client.generate("draw a login flow")

    assert calls == 3
    assert exc_info.value.error_info.category == ErrorCategory.SERVER
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_offline_fails_fast_without_request() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200)

    client = build_client(handler, ConnectivityEventSource(online=False))
    with pytest.raises(DiagramRequestFailed) as exc_info:
        await client.generate("draw a login flow")

    assert calls == 0
    assert exc_info.value.error_info.category == ErrorCategory.NETWORK


@pytest.mark.asyncio
async def test_retry_last_resubmits_previous_prompt() -> None:
    prompts: list[str] = []
    statuses = iter([500, 500, 500, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["prompt"])
        status = next(statuses)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(
            200,
            json={"status": "success", "message": "ok", "downloadUrl": "/api/files/x"},
        )

    client = build_client(handler)
    with pytest.raises(DiagramRequestFailed):
        await client.generate("draw a login flow")

    result = await client.retry_last()
    assert result.download_url == "/api/files/x"
    assert prompts == ["draw a login flow"] * 4


@pytest.mark.asyncio
async def test_retry_last_refuses_non_retryable_failure() -> None:
    client = build_client(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(DiagramRequestFailed) as first:
        await client.generate("draw a login flow")
    assert first.value.retryable is False

    with pytest.raises(DiagramRequestFailed):
        await client.retry_last()


@pytest.mark.asyncio
async def test_retry_last_without_history() -> None:
    client = build_client(lambda request: httpx.Response(200))
    with pytest.raises(RuntimeError):
        await client.retry_last()
