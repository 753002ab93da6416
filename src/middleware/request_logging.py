"""
请求耗时日志中间件（ASGI）

- 每个响应附带 X-Response-Time 头
- 超过慢请求阈值的请求记录警告
- 4xx 记录警告，5xx 记录错误
"""

from __future__ import annotations

import time

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.core.logger import logger


class RequestLoggingMiddleware:
    def __init__(self, app: ASGIApp, slow_threshold: float) -> None:
        self.app = app
        self.slow_threshold = slow_threshold

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                elapsed_ms = (time.perf_counter() - started) * 1000
                MutableHeaders(scope=message)["X-Response-Time"] = f"{elapsed_ms:.0f}ms"
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed = time.perf_counter() - started
            method = scope.get("method")
            path = scope["path"]
            if elapsed > self.slow_threshold:
                logger.warning(f"慢请求: {method} {path} 耗时 {elapsed:.2f}s (status={status_code})")
            if status_code >= 500:
                logger.error(f"{method} {path} -> {status_code} ({elapsed * 1000:.0f}ms)")
            elif status_code >= 400:
                logger.warning(f"{method} {path} -> {status_code} ({elapsed * 1000:.0f}ms)")
            else:
                logger.debug(f"{method} {path} -> {status_code} ({elapsed * 1000:.0f}ms)")
