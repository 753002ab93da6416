"""
请求限流器 - 按客户端的固定窗口计数

功能：
1. 每个客户端标识（通常是 IP）一个计数记录
2. 固定窗口：窗口到期后计数重置为 1，而不是滑动统计
3. 超出上限的那次请求本身即被拒绝，并返回距重置的剩余时间
4. 过期记录在任意一次访问时惰性清理；记录数达到上限时淘汰最早的窗口

仅内存实现，进程重启后计数清零；单事件循环内使用，无需加锁。
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.config.constants import RateLimitDefaults
from src.core.logger import logger


@dataclass
class ThrottleRecord:
    """单个客户端的窗口计数"""

    count: int
    window_reset_at: float


@dataclass(frozen=True)
class ThrottleDecision:
    """限流判定结果"""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch 秒
    retry_after: float  # 距窗口重置的秒数

    def headers(self) -> dict[str, str]:
        """限流相关的响应头"""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


class RequestThrottle:
    """固定窗口限流器"""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        name: str = "default",
        max_entries: int = RateLimitDefaults.MAX_MEMORY_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._max_entries = max_entries
        self._clock = clock
        self._records: dict[str, ThrottleRecord] = {}

    def check(self, client_id: str) -> ThrottleDecision:
        now = self._clock()
        self._cleanup_expired(now)

        record = self._records.get(client_id)
        if record is None or now >= record.window_reset_at:
            if record is None and len(self._records) >= self._max_entries:
                self._evict_oldest()
            record = ThrottleRecord(count=1, window_reset_at=now + self.window_seconds)
            self._records[client_id] = record
        else:
            record.count += 1

        allowed = record.count <= self.max_requests
        decision = ThrottleDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - record.count),
            reset_at=record.window_reset_at,
            retry_after=max(0.0, record.window_reset_at - now),
        )
        if not allowed:
            logger.warning(
                "[{}] 客户端 {} 超出限流: {}/{}，{:.0f}s 后重置",
                self.name,
                client_id,
                record.count,
                self.max_requests,
                decision.retry_after,
            )
        return decision

    def reset(self, client_id: str | None = None) -> None:
        if client_id is None:
            self._records.clear()
        else:
            self._records.pop(client_id, None)

    def get_record(self, client_id: str) -> ThrottleRecord | None:
        return self._records.get(client_id)

    def __len__(self) -> int:
        return len(self._records)

    def _cleanup_expired(self, now: float) -> None:
        expired = [k for k, r in self._records.items() if r.window_reset_at <= now]
        for key in expired:
            del self._records[key]
        if expired:
            logger.debug("[{}] 清理了 {} 个过期限流记录", self.name, len(expired))

    def _evict_oldest(self) -> None:
        # 重置时间最早的窗口即最早创建的窗口
        oldest = min(self._records, key=lambda k: self._records[k].window_reset_at)
        del self._records[oldest]
        logger.warning("[{}] 限流记录达到上限 {}，已淘汰最早条目", self.name, self._max_entries)
