"""
请求截止时间守卫（ASGI 中间件）

每个入站 HTTP 请求有一个整体时间上限。超过上限且处理器尚未开始发送响应时：
- 立即返回一次 408 REQUEST_TIMEOUT
- 之后处理器的任何发送都被丢弃（先写者胜出）
- 处理器任务不会被取消，继续运行到结束后结果被丢弃；
  模型调用自带截止时间，因此被丢弃的工作量有上限

处理器已开始发送响应时不再干预，等待其正常完成。
"""

from __future__ import annotations

import asyncio

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.core.exceptions import ErrorCode
from src.core.logger import logger

TIMEOUT_MESSAGE = "请求超时，请稍后重试"


class _ResponseState:
    __slots__ = ("started", "timed_out")

    def __init__(self) -> None:
        self.started = False
        self.timed_out = False


class RequestDeadlineMiddleware:
    def __init__(self, app: ASGIApp, timeout: float, exclude_paths: tuple[str, ...] = ()) -> None:
        self.app = app
        self.timeout = timeout
        self.exclude_paths = exclude_paths
        # 已超时但仍在运行的处理器任务，保持引用直到完成
        self._abandoned: set[asyncio.Task[None]] = set()

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        state = _ResponseState()

        async def guarded_send(message: Message) -> None:
            if state.timed_out:
                return
            if message["type"] == "http.response.start":
                state.started = True
            await send(message)

        task = asyncio.ensure_future(self.app(scope, receive, guarded_send))
        done, _ = await asyncio.wait({task}, timeout=self.timeout)
        if task in done or state.started:
            await task
            return

        state.timed_out = True
        logger.warning(
            "请求超过截止时间 {}s，返回 408: {} {}",
            self.timeout,
            scope.get("method"),
            scope["path"],
        )
        self._abandoned.add(task)
        task.add_done_callback(self._on_abandoned_done)

        response = JSONResponse(
            {
                "status": "error",
                "message": TIMEOUT_MESSAGE,
                "code": ErrorCode.REQUEST_TIMEOUT.value,
            },
            status_code=408,
        )
        await response(scope, receive, send)

    def _on_abandoned_done(self, task: asyncio.Task[None]) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("超时请求的处理器以异常结束（结果已丢弃）: {}", error)
        else:
            logger.debug("超时请求的处理器已完成，结果已丢弃")
