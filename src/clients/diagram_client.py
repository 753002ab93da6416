"""
图表生成客户端

界面侧的请求流程：
1. ConnectionQualityMonitor 根据当前网络质量选择超时
2. RetryingDispatcher 提交 POST /api/generate-diagram
3. 任何失败都经 ErrorClassifier 归一为 ErrorInfo，以 DiagramRequestFailed 抛出

失败可重试时，retry_last() 使用上一次提交的描述重新请求。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from src.clients.network_monitor import ConnectionQualityMonitor
from src.clients.resilient_fetch import RetryingDispatcher, RetryPolicy, SleepFunc
from src.config.constants import ClientDefaults
from src.core.error_utils import extract_payload_message
from src.core.logger import logger
from src.services.orchestration.error_classifier import (
    ErrorAction,
    ErrorCategory,
    ErrorClassifier,
    ErrorInfo,
)
from src.services.rate_limit.detector import RateLimitDetector

GENERATE_PATH = "/api/generate-diagram"


@dataclass
class DiagramResult:
    """生成成功的结果"""

    message: str
    download_url: str
    image_url: str | None = None
    cached: bool = False


class DiagramRequestFailed(Exception):
    """生成请求失败，携带归一化的错误信息"""

    def __init__(self, error_info: ErrorInfo, status_code: int | None = None) -> None:
        super().__init__(error_info.message)
        self.error_info = error_info
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.error_info.retryable


class DiagramClient:
    """图表生成服务客户端"""

    def __init__(
        self,
        base_url: str,
        monitor: ConnectionQualityMonitor,
        http_client: httpx.AsyncClient,
        *,
        max_retries: int = ClientDefaults.MAX_RETRIES,
        base_delay: float = ClientDefaults.BASE_DELAY_SECONDS,
        sleep: SleepFunc | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.monitor = monitor
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._dispatcher = RetryingDispatcher(http_client, sleep=sleep or asyncio.sleep)
        self.last_prompt: str | None = None
        self.last_error: DiagramRequestFailed | None = None

    def current_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            timeout=self.monitor.recommended_timeout(),
        )

    async def generate(self, prompt: str) -> DiagramResult:
        self.last_prompt = prompt
        self.last_error = None
        try:
            return await self._submit(prompt)
        except DiagramRequestFailed as e:
            self.last_error = e
            raise

    async def retry_last(self) -> DiagramResult:
        """使用上一次的描述重试（仅当上一次失败可重试）"""
        if self.last_prompt is None:
            raise RuntimeError("没有可重试的请求")
        if self.last_error is not None and not self.last_error.retryable:
            raise self.last_error
        return await self.generate(self.last_prompt)

    async def _submit(self, prompt: str) -> DiagramResult:
        if not self.monitor.state.online:
            raise DiagramRequestFailed(
                ErrorInfo(
                    message="网络连接已断开，请检查网络后重试",
                    category=ErrorCategory.NETWORK,
                    retryable=True,
                    user_action=ErrorAction.CHECK_NETWORK,
                )
            )

        policy = self.current_policy()
        logger.debug(
            "提交图表生成请求: quality={}, timeout={}s",
            self.monitor.state.quality_tag,
            policy.timeout,
        )
        try:
            response = await self._dispatcher.dispatch(
                "POST",
                f"{self.base_url}{GENERATE_PATH}",
                policy,
                json={"prompt": prompt},
            )
        except Exception as e:
            info = ErrorClassifier.classify(e)
            logger.warning("图表生成请求失败 [{}]: {}", info.category.value, e)
            raise DiagramRequestFailed(info) from e

        payload = _read_json(response)
        if not response.is_success:
            retry_after = RateLimitDetector.detect_from_headers(response.headers).retry_after
            info = ErrorClassifier.from_response(
                response.status_code, payload, retry_after=retry_after
            )
            raise DiagramRequestFailed(info, response.status_code)

        if not isinstance(payload, dict) or payload.get("status") != "success":
            message = extract_payload_message(payload) or "服务返回了无法识别的响应"
            raise DiagramRequestFailed(ErrorClassifier.classify(message), response.status_code)

        download_url = payload.get("downloadUrl")
        if not isinstance(download_url, str) or not download_url:
            logger.warning("图表生成响应缺少 downloadUrl")
            raise DiagramRequestFailed(
                ErrorClassifier.classify("服务返回了无法识别的响应"), response.status_code
            )

        return DiagramResult(
            message=payload.get("message") or "",
            download_url=download_url,
            image_url=payload.get("imageUrl"),
            cached=bool(payload.get("cached", False)),
        )


def _read_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
