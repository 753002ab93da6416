"""
速率限制检测器 - 解析 429 响应头，得到建议的退避时间

同时用于：
- 服务端：解析上游模型 API 的 429 响应（anthropic-ratelimit-* 头）
- 客户端：解析本服务返回的 Retry-After / X-RateLimit-* 头
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from src.core.logger import logger


class RateLimitInfo:
    """速率限制信息"""

    def __init__(
        self,
        retry_after: float | None = None,
        limit_value: int | None = None,
        remaining: int | None = None,
        reset_at: datetime | None = None,
        raw_headers: dict[str, str] | None = None,
    ):
        self.retry_after = retry_after  # 建议等待的秒数
        self.limit_value = limit_value  # 窗口内允许的请求数
        self.remaining = remaining  # 剩余配额
        self.reset_at = reset_at  # 窗口重置时间
        self.raw_headers = raw_headers or {}

    @property
    def suggested_backoff(self) -> float | None:
        """建议退避秒数：优先 Retry-After，其次由重置时间推算"""
        if self.retry_after is not None:
            return self.retry_after
        if self.reset_at is not None:
            delta = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
            return max(delta, 0.0)
        return None

    def __repr__(self) -> str:
        return (
            f"RateLimitInfo(retry_after={self.retry_after}, "
            f"limit={self.limit_value}, "
            f"remaining={self.remaining})"
        )


class RateLimitDetector:
    """
    速率限制检测器

    支持的头部格式：
    - Anthropic: anthropic-ratelimit-requests-{limit,remaining,reset}
    - 通用: retry-after, x-ratelimit-{limit,remaining,reset}
    """

    @staticmethod
    def detect_from_headers(headers: Mapping[str, str]) -> RateLimitInfo:
        headers_lower = {k.lower(): v for k, v in headers.items()}

        if any(k.startswith("anthropic-ratelimit-") for k in headers_lower):
            info = RateLimitDetector._parse_anthropic_headers(headers_lower)
        else:
            info = RateLimitDetector._parse_generic_headers(headers_lower)

        logger.debug("429 响应头解析结果: {}", info)
        return info

    @staticmethod
    def _parse_anthropic_headers(headers: dict[str, str]) -> RateLimitInfo:
        """
        解析 Anthropic API 的速率限制头

        常见头部：
        - anthropic-ratelimit-requests-limit: 50
        - anthropic-ratelimit-requests-remaining: 0
        - anthropic-ratelimit-requests-reset: 2024-01-01T00:00:00Z
        - retry-after: 60
        """
        return RateLimitInfo(
            retry_after=RateLimitDetector._parse_retry_after(headers),
            limit_value=RateLimitDetector._parse_int(
                headers.get("anthropic-ratelimit-requests-limit")
            ),
            remaining=RateLimitDetector._parse_int(
                headers.get("anthropic-ratelimit-requests-remaining")
            ),
            reset_at=RateLimitDetector._parse_datetime(
                headers.get("anthropic-ratelimit-requests-reset")
            ),
            raw_headers=headers,
        )

    @staticmethod
    def _parse_generic_headers(headers: dict[str, str]) -> RateLimitInfo:
        """
        解析通用的速率限制头

        标准头部：
        - retry-after: 60
        - x-ratelimit-limit: 100
        - x-ratelimit-remaining: 0
        - x-ratelimit-reset: 1609459200 (epoch 秒)
        """
        reset_at = None
        reset_epoch = RateLimitDetector._parse_int(headers.get("x-ratelimit-reset"))
        if reset_epoch is not None:
            reset_at = datetime.fromtimestamp(reset_epoch, tz=timezone.utc)

        return RateLimitInfo(
            retry_after=RateLimitDetector._parse_retry_after(headers),
            limit_value=RateLimitDetector._parse_int(headers.get("x-ratelimit-limit")),
            remaining=RateLimitDetector._parse_int(headers.get("x-ratelimit-remaining")),
            reset_at=reset_at,
            raw_headers=headers,
        )

    @staticmethod
    def _parse_retry_after(headers: dict[str, str]) -> float | None:
        """解析 Retry-After 头（秒数或 HTTP 日期）"""
        retry_after_str = headers.get("retry-after")
        if not retry_after_str:
            return None

        try:
            return max(float(retry_after_str), 0.0)
        except ValueError:
            pass

        try:
            retry_date = parsedate_to_datetime(retry_after_str)
        except (TypeError, ValueError):
            return None
        if retry_date.tzinfo is None:
            retry_date = retry_date.replace(tzinfo=timezone.utc)
        return max(retry_date.timestamp() - time.time(), 0.0)

    @staticmethod
    def _parse_int(value: str | None) -> int | None:
        """安全解析整数"""
        if not value:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_datetime(value: str | None) -> datetime | None:
        """安全解析 ISO 8601 日期时间"""
        if not value:
            return None
        try:
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            return datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None


def detect_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo:
    """检测速率限制信息（便捷函数）"""
    return RateLimitDetector.detect_from_headers(headers)
