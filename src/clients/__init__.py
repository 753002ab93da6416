"""客户端侧组件：连接质量监控、带重试的请求分发、图表生成客户端"""

from .diagram_client import DiagramClient, DiagramRequestFailed, DiagramResult
from .http_client import HTTPClientPool, close_http_clients
from .network_monitor import (
    ConnectionQuality,
    ConnectionQualityMonitor,
    ConnectionState,
    ConnectivityEventSource,
    Subscription,
    check_network_connection,
    recommended_timeout,
)
from .resilient_fetch import RetryingDispatcher, RetryPolicy, fetch_with_timeout

__all__ = [
    "ConnectionQuality",
    "ConnectionQualityMonitor",
    "ConnectionState",
    "ConnectivityEventSource",
    "DiagramClient",
    "DiagramRequestFailed",
    "DiagramResult",
    "HTTPClientPool",
    "RetryPolicy",
    "RetryingDispatcher",
    "Subscription",
    "check_network_connection",
    "close_http_clients",
    "fetch_with_timeout",
    "recommended_timeout",
]
