"""
可选外部能力的探测缓存

记住最近一次探测结果，在新鲜期内直接返回，避免每个请求都去探测外部工具。
探测本身带独立的短超时，任何探测失败都视为不可用，不向上抛出。
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.core.logger import logger

ProbeFunc = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class CapabilityProbeRecord:
    """单次探测结果（每次探测整体替换）"""

    available: bool
    checked_at: float


class CapabilityProbeCache:
    """单一能力的可用性缓存"""

    def __init__(
        self,
        probe: ProbeFunc,
        *,
        freshness_seconds: float,
        probe_timeout: float,
        name: str = "capability",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self.freshness_seconds = freshness_seconds
        self.probe_timeout = probe_timeout
        self.name = name
        self._clock = clock
        self._record: CapabilityProbeRecord | None = None

    @property
    def record(self) -> CapabilityProbeRecord | None:
        return self._record

    def is_fresh(self) -> bool:
        return (
            self._record is not None
            and self._clock() - self._record.checked_at < self.freshness_seconds
        )

    async def is_available(self) -> bool:
        record = self._record
        if record is not None and self.is_fresh():
            return record.available

        available = await self._run_probe()
        previous = self._record
        self._record = CapabilityProbeRecord(available=available, checked_at=self._clock())

        if previous is None or previous.available != available:
            log = logger.info if available else logger.warning
            log("[{}] 能力探测结果: {}", self.name, "可用" if available else "不可用")
        return available

    def invalidate(self) -> None:
        """丢弃缓存记录，下次调用时重新探测"""
        self._record = None

    async def _run_probe(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self._probe(), timeout=self.probe_timeout))
        except asyncio.TimeoutError:
            logger.warning("[{}] 能力探测超时 ({}s)", self.name, self.probe_timeout)
            return False
        except Exception as e:
            logger.warning("[{}] 能力探测失败: {}", self.name, e)
            return False
