"""
连接质量监控

两个独立维度：
- 连通性: online / offline
- 质量: unknown / slow / normal（由有效连接类型推导，如 "2g"、"4g"）

监控器在构造时同步读取当前连通性，之后只响应事件源推送的变化，不做轮询。
每个事件订阅都返回 Subscription 句柄，close() 时统一释放，避免监听器泄漏。
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from src.clients.http_client import HTTPClientPool
from src.core.logger import logger

Listener = Callable[..., None]

EVENT_ONLINE = "online"
EVENT_OFFLINE = "offline"
EVENT_CHANGE = "change"

SLOW_CONNECTION_TYPES = frozenset({"slow-2g", "2g"})

# 有效连接类型 -> 推荐超时（秒）
_TIMEOUT_BY_CONNECTION_TYPE: dict[str, float] = {
    "slow-2g": 60.0,
    "2g": 45.0,
    "3g": 30.0,
    "4g": 20.0,
    "5g": 20.0,
}
DEFAULT_TIMEOUT = 30.0


class ConnectionQuality(str, Enum):
    UNKNOWN = "unknown"
    SLOW = "slow"
    NORMAL = "normal"


def quality_for(connection_type: str | None) -> ConnectionQuality:
    if not connection_type or connection_type == "unknown":
        return ConnectionQuality.UNKNOWN
    if connection_type in SLOW_CONNECTION_TYPES:
        return ConnectionQuality.SLOW
    return ConnectionQuality.NORMAL


def recommended_timeout(connection_type: str | None) -> float:
    """根据有效连接类型返回推荐的请求超时（纯查表）"""
    return _TIMEOUT_BY_CONNECTION_TYPE.get(connection_type or "", DEFAULT_TIMEOUT)


class Subscription:
    """事件订阅句柄，cancel() 幂等"""

    def __init__(self, source: ConnectivityEventSource, event: str, listener: Listener) -> None:
        self._source = source
        self.event = event
        self._listener = listener
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._source._remove_listener(self.event, self._listener)


class ConnectivityEventSource:
    """
    平台连通性事件源

    宿主环境（桌面应用、CLI、测试）在检测到变化时调用 set_online / set_connection_type，
    事件源据此向订阅者派发 online / offline / change 事件。
    """

    def __init__(self, online: bool = True, connection_type: str = "unknown") -> None:
        self._online = online
        self._connection_type = connection_type
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    @property
    def online(self) -> bool:
        return self._online

    @property
    def connection_type(self) -> str:
        return self._connection_type

    def subscribe(self, event: str, listener: Listener) -> Subscription:
        self._listeners[event].append(listener)
        return Subscription(self, event, listener)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        self._emit(EVENT_ONLINE if online else EVENT_OFFLINE)

    def set_connection_type(self, connection_type: str) -> None:
        if connection_type == self._connection_type:
            return
        self._connection_type = connection_type
        self._emit(EVENT_CHANGE, connection_type)

    def _remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: str, *args: Any) -> None:
        # 复制一份，允许监听器在回调中取消订阅
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
            except Exception as e:
                logger.warning("连通性事件监听器异常 ({}): {}", event, e)


@dataclass
class ConnectionState:
    """当前连接状态（仅由监控器修改）"""

    online: bool
    slow: bool
    quality_tag: str


class ConnectionQualityMonitor:
    """
    连接质量监控器

    用法:
        with ConnectionQualityMonitor(source) as monitor:
            timeout = monitor.recommended_timeout()
    """

    def __init__(self, source: ConnectivityEventSource) -> None:
        self._source = source
        connection_type = source.connection_type
        self.state = ConnectionState(
            online=source.online,
            slow=connection_type in SLOW_CONNECTION_TYPES,
            quality_tag=connection_type,
        )
        self._subscriptions = [
            source.subscribe(EVENT_ONLINE, self._handle_online),
            source.subscribe(EVENT_OFFLINE, self._handle_offline),
            source.subscribe(EVENT_CHANGE, self._handle_change),
        ]

    @property
    def quality(self) -> ConnectionQuality:
        return quality_for(self.state.quality_tag)

    @property
    def closed(self) -> bool:
        return not any(s.active for s in self._subscriptions)

    def recommended_timeout(self) -> float:
        return recommended_timeout(self.state.quality_tag)

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()

    def __enter__(self) -> ConnectionQualityMonitor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _handle_online(self) -> None:
        self.state.online = True
        logger.info("网络已恢复连接")

    def _handle_offline(self) -> None:
        self.state.online = False
        logger.warning("网络连接已断开")

    def _handle_change(self, connection_type: str) -> None:
        self.state.quality_tag = connection_type or "unknown"
        self.state.slow = self.state.quality_tag in SLOW_CONNECTION_TYPES
        logger.debug(
            "网络质量变化: {} (slow={}, timeout={}s)",
            self.state.quality_tag,
            self.state.slow,
            self.recommended_timeout(),
        )


async def check_network_connection(base_url: str, timeout: float = 5.0) -> bool:
    """通过 HEAD /health 检测到服务端的连通性"""
    try:
        async with HTTPClientPool.get_temp_client(timeout=timeout) as client:
            response = await client.head(f"{base_url.rstrip('/')}/health")
            return response.is_success
    except httpx.HTTPError as e:
        logger.debug("网络连通性检测失败: {}", e)
        return False
