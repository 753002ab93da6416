"""
客户端请求的超时与重试

- fetch_with_timeout: 单次请求与截止时间竞争，超时取消请求并抛出 RequestTimeoutError
- RetryingDispatcher: 在 fetch_with_timeout 之上按指数退避重试

重试规则：
- 成功或 4xx 响应立即返回（客户端错误不是瞬时故障）
- 5xx 响应在仍有剩余次数时等待 base_delay * 2**attempt 后重试，否则原样返回
- 抛出的异常仅在分类为 network 时重试，其余立即向上抛出
- 次数耗尽后原样返回最后一次响应或抛出最后一次异常
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from src.config.constants import ClientDefaults
from src.core.exceptions import RequestTimeoutError
from src.core.logger import logger
from src.services.orchestration.error_classifier import ErrorCategory, ErrorClassifier

SleepFunc = Callable[[float], Awaitable[None]]


async def fetch_with_timeout(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """
    发送单次请求，超过截止时间则取消

    Args:
        client: httpx 客户端
        method: HTTP 方法
        url: 请求地址
        timeout: 截止时间（秒）
        **kwargs: 透传给 client.request 的参数

    Raises:
        RequestTimeoutError: 截止时间到期
    """
    try:
        # wait_for 在超时时取消请求协程，正常完成时取消计时器
        return await asyncio.wait_for(client.request(method, url, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise RequestTimeoutError(timeout, url) from e


@dataclass(frozen=True)
class RetryPolicy:
    """重试策略"""

    max_retries: int = ClientDefaults.MAX_RETRIES
    base_delay: float = ClientDefaults.BASE_DELAY_SECONDS
    timeout: float = ClientDefaults.DEFAULT_TIMEOUT_SECONDS
    # None 表示不设上限（延迟随次数指数增长）
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (2**attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class RetryingDispatcher:
    """带指数退避的请求分发器"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._client = client
        self._sleep = sleep

    async def dispatch(
        self,
        method: str,
        url: str,
        policy: RetryPolicy | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        policy = policy or RetryPolicy()

        for attempt in range(policy.max_retries + 1):
            has_more = attempt < policy.max_retries
            try:
                response = await fetch_with_timeout(
                    self._client, method, url, timeout=policy.timeout, **kwargs
                )
            except Exception as e:
                info = ErrorClassifier.classify(e)
                if has_more and info.category == ErrorCategory.NETWORK:
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        "请求网络错误，{}s 后重试 ({}/{}): {} {}: {}",
                        delay,
                        attempt + 1,
                        policy.max_retries,
                        method,
                        url,
                        e,
                    )
                    await self._sleep(delay)
                    continue
                raise

            if response.is_success or ErrorClassifier.is_client_error(response.status_code):
                return response

            if has_more and ErrorClassifier.is_server_error(response.status_code):
                delay = policy.delay_for(attempt)
                logger.warning(
                    "服务端返回 {}，{}s 后重试 ({}/{}): {} {}",
                    response.status_code,
                    delay,
                    attempt + 1,
                    policy.max_retries,
                    method,
                    url,
                )
                await response.aclose()
                await self._sleep(delay)
                continue

            return response

        # range 至少执行一次，循环内必然 return 或 raise
        raise AssertionError("unreachable")
