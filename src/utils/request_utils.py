"""
请求处理工具函数
提供统一的客户端标识提取功能（限流按客户端 IP 计数）

X-Real-IP / X-Forwarded-For 由客户端可任意设置，只有部署在会覆盖这两个头的
反向代理之后（TRUST_PROXY_HEADERS=true）才采信，否则一律使用套接字对端地址。
"""

from __future__ import annotations

from collections.abc import Mapping

from fastapi import Request
from starlette.types import Scope


def get_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """
    获取客户端IP地址

    trust_proxy_headers 为 True 时按优先级检查：
    1. X-Real-IP 头（由最外层反向代理设置）
    2. X-Forwarded-For 头的第一个 IP（原始客户端）
    否则（以及上述头缺失时）使用直接客户端IP

    Returns:
        str: 客户端IP地址，如果无法获取则返回 "unknown"
    """
    if trust_proxy_headers:
        ip = extract_ip_from_headers({k.lower(): v for k, v in request.headers.items()})
        if ip != "unknown":
            return ip

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def get_client_ip_from_scope(scope: Scope, *, trust_proxy_headers: bool = False) -> str:
    """从 ASGI scope 中提取客户端IP（用于纯 ASGI 中间件）"""
    if trust_proxy_headers:
        headers = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in scope.get("headers", [])
        }
        ip = extract_ip_from_headers(headers)
        if ip != "unknown":
            return ip

    client = scope.get("client")
    if client and client[0]:
        return str(client[0])

    return "unknown"


def extract_ip_from_headers(headers: Mapping[str, str]) -> str:
    """
    从HTTP头字典中提取IP地址（键为小写）

    Returns:
        str: 客户端IP地址
    """
    # 优先检查 X-Real-IP
    real_ip = headers.get("x-real-ip", "")
    if real_ip:
        return real_ip.strip()

    # 检查 X-Forwarded-For，取第一个 IP
    forwarded_for = headers.get("x-forwarded-for", "")
    if forwarded_for:
        ips = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
        if ips:
            return ips[0]

    return "unknown"
