"""
生成结果缓存

按输入指纹缓存昂贵的生成结果：
- 每个条目带 TTL，读取时惰性过期（过期即删除）
- 容量满时按插入顺序淘汰最早的一个条目（不是严格 LRU）
- 可选的定期清理由调度器触发，见 MaintenanceScheduler

仅在单个事件循环内使用，不做内部加锁。
"""

from __future__ import annotations

import hashlib
import re
import time
import unicodedata
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from src.core.logger import logger

T = TypeVar("T")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """规范化提示词：NFC、去除首尾空白、折叠连续空白"""
    return _WHITESPACE_RE.sub(" ", unicodedata.normalize("NFC", prompt)).strip()


def compute_fingerprint(prompt: str) -> str:
    """
    计算提示词指纹（用作缓存键）

    相同输入得到相同指纹；不保证抗碰撞，碰撞只影响缓存正确性。
    """
    digest = hashlib.sha256(normalize_prompt(prompt).encode("utf-8")).hexdigest()
    return f"llm_{digest[:32]}"


@dataclass
class CacheEntry(Generic[T]):
    """缓存条目"""

    value: T
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class GenerationCache(Generic[T]):
    """有界、带过期时间的键值缓存"""

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # OrderedDict 保持插入顺序，重复 put 不改变位置
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug("缓存条目已过期: {}", key)
            return None

        self._hits += 1
        return entry.value

    def put(self, key: str, value: T) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("缓存已满，淘汰最早条目: {}", oldest_key)

        now = self._clock()
        # 覆盖已有键时保留其原插入位置
        self._entries[key] = CacheEntry(
            value=value, created_at=now, expires_at=now + self.ttl_seconds
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """清理所有过期条目，返回清理数量"""
        now = self._clock()
        expired_keys = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.info("清理了 {} 个过期缓存条目", len(expired_keys))
        return len(expired_keys)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def stats(self) -> dict[str, Any]:
        """获取缓存统计信息"""
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total, 4) if total else None,
        }
