"""
入站请求限流中间件（ASGI）

按客户端 IP 应用一个或多个 RequestThrottle（全局限流、/api 限流）：
- 每个响应附带 X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset
- 任一限流器拒绝时直接返回 429，附带 Retry-After 与 retryAfter 字段

客户端 IP 默认取套接字对端地址，trust_proxy_headers 开启时才采信代理头。
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.core.exceptions import ErrorCode
from src.core.logger import logger
from src.services.rate_limit.throttle import RequestThrottle, ThrottleDecision
from src.utils.request_utils import get_client_ip_from_scope

RATE_LIMIT_MESSAGE = "请求过于频繁，请稍后再试"


@dataclass(frozen=True)
class ThrottleRule:
    """对路径前缀应用的限流器（前缀为空表示所有请求）"""

    throttle: RequestThrottle
    path_prefix: str = ""

    def matches(self, path: str) -> bool:
        return path.startswith(self.path_prefix)


class RateLimitMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        rules: Sequence[ThrottleRule],
        exclude_paths: tuple[str, ...] = (),
        *,
        trust_proxy_headers: bool = False,
    ) -> None:
        self.app = app
        self.rules = list(rules)
        self.exclude_paths = exclude_paths
        self.trust_proxy_headers = trust_proxy_headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        client_ip = get_client_ip_from_scope(
            scope, trust_proxy_headers=self.trust_proxy_headers
        )
        decisions = [
            rule.throttle.check(client_ip) for rule in self.rules if rule.matches(scope["path"])
        ]
        if not decisions:
            await self.app(scope, receive, send)
            return

        denied = next((d for d in decisions if not d.allowed), None)
        if denied is not None:
            logger.warning("限流拒绝: {} {} {}", client_ip, scope.get("method"), scope["path"])
            response = JSONResponse(
                {
                    "status": "error",
                    "message": RATE_LIMIT_MESSAGE,
                    "code": ErrorCode.RATE_LIMIT_EXCEEDED.value,
                    "retryAfter": max(1, math.ceil(denied.retry_after)),
                },
                status_code=429,
                headers=denied.headers(),
            )
            await response(scope, receive, send)
            return

        # 报告剩余配额最少的限流器
        tightest = min(decisions, key=lambda d: d.remaining)
        await self.app(scope, receive, _with_headers(send, tightest))


def _with_headers(send: Send, decision: ThrottleDecision) -> Send:
    async def send_wrapper(message: Message) -> None:
        if message["type"] == "http.response.start":
            headers = MutableHeaders(scope=message)
            for key, value in decision.headers().items():
                headers[key] = value
        await send(message)

    return send_wrapper
