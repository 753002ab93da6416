import httpx
import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from src.middleware.rate_limit import RATE_LIMIT_MESSAGE, RateLimitMiddleware, ThrottleRule
from src.middleware.request_logging import RequestLoggingMiddleware
from src.services.rate_limit.throttle import RequestThrottle


async def ok_endpoint(request) -> JSONResponse:
    return JSONResponse({"ok": True})


def build_app(rules: list[ThrottleRule], *, trust_proxy_headers: bool = False) -> Starlette:
    app = Starlette(
        routes=[
            Route("/health", ok_endpoint),
            Route("/api/generate-diagram", ok_endpoint, methods=["POST"]),
        ]
    )
    app.add_middleware(
        RateLimitMiddleware, rules=rules, trust_proxy_headers=trust_proxy_headers
    )
    app.add_middleware(RequestLoggingMiddleware, slow_threshold=5.0)
    return app


def client_for(app: Starlette) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_fourth_request_in_window_is_rejected(clock) -> None:
    app = build_app([ThrottleRule(RequestThrottle(3, 60, clock=clock))])

    async with client_for(app) as client:
        responses = [await client.get("/health") for _ in range(4)]

    assert [r.status_code for r in responses] == [200, 200, 200, 429]
    assert [r.headers["X-RateLimit-Remaining"] for r in responses[:3]] == ["2", "1", "0"]

    rejected = responses[-1]
    assert rejected.headers["Retry-After"] == "60"
    assert rejected.json() == {
        "status": "error",
        "message": RATE_LIMIT_MESSAGE,
        "code": "RATE_LIMIT_EXCEEDED",
        "retryAfter": 60,
    }


@pytest.mark.asyncio
async def test_window_reset_allows_again(clock) -> None:
    app = build_app([ThrottleRule(RequestThrottle(1, 60, clock=clock))])

    async with client_for(app) as client:
        assert (await client.get("/health")).status_code == 200
        assert (await client.get("/health")).status_code == 429
        clock.advance(60)
        assert (await client.get("/health")).status_code == 200


@pytest.mark.asyncio
async def test_api_rule_applies_only_to_api_paths(clock) -> None:
    rules = [
        ThrottleRule(RequestThrottle(100, 60, clock=clock)),
        ThrottleRule(RequestThrottle(1, 60, clock=clock), path_prefix="/api"),
    ]
    app = build_app(rules)

    async with client_for(app) as client:
        first = await client.post("/api/generate-diagram")
        limited = await client.post("/api/generate-diagram")
        health = await client.get("/health")

    assert first.status_code == 200
    # 多个限流器时报告剩余最少的一个
    assert first.headers["X-RateLimit-Limit"] == "1"
    assert first.headers["X-RateLimit-Remaining"] == "0"
    assert limited.status_code == 429
    assert health.status_code == 200
    assert health.headers["X-RateLimit-Limit"] == "100"


@pytest.mark.asyncio
async def test_spoofed_forwarded_headers_do_not_reset_window(clock) -> None:
    app = build_app([ThrottleRule(RequestThrottle(3, 60, clock=clock))])

    async with client_for(app) as client:
        statuses = [
            (await client.get("/health", headers={"X-Forwarded-For": f"1.2.3.{i}"})).status_code
            for i in range(10)
        ]
        spoofed_real_ip = await client.get("/health", headers={"X-Real-IP": "10.9.9.9"})

    assert statuses == [200] * 3 + [429] * 7
    assert spoofed_real_ip.status_code == 429


@pytest.mark.asyncio
async def test_trusted_proxy_headers_identify_clients(clock) -> None:
    app = build_app(
        [ThrottleRule(RequestThrottle(1, 60, clock=clock))], trust_proxy_headers=True
    )

    async with client_for(app) as client:
        first = await client.get("/health", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
        second = await client.get("/health", headers={"X-Real-IP": "10.0.0.2"})
        again = await client.get("/health", headers={"X-Forwarded-For": "10.0.0.1"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert again.status_code == 429


@pytest.mark.asyncio
async def test_response_time_header(clock) -> None:
    app = build_app([ThrottleRule(RequestThrottle(5, 60, clock=clock))])

    async with client_for(app) as client:
        response = await client.get("/health")

    assert response.headers["X-Response-Time"].endswith("ms")
