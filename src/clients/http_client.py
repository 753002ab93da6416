"""
全局HTTP客户端池管理
避免每次请求都创建新的AsyncClient

- 默认客户端：进程内复用单一客户端（模型 API 调用）
- 临时客户端：一次性请求，用完即关闭
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import httpx

from src.config import config
from src.core.logger import logger

# 模块级锁，避免类属性延迟初始化的竞态条件
_default_client_lock = asyncio.Lock()


def _default_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=config.http_connect_timeout,
        read=config.http_read_timeout,
        write=config.http_write_timeout,
        pool=config.http_pool_timeout,
    )


def _default_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=config.http_max_connections,
        max_keepalive_connections=config.http_keepalive_connections,
        keepalive_expiry=config.http_keepalive_expiry,
    )


class HTTPClientPool:
    """
    全局HTTP客户端池

    管理可重用的httpx.AsyncClient实例，应用关闭时统一释放。
    """

    _default_client: httpx.AsyncClient | None = None

    @classmethod
    async def get_default_client_async(cls) -> httpx.AsyncClient:
        """获取默认的HTTP客户端（并发安全）"""
        if cls._default_client is not None and not cls._default_client.is_closed:
            return cls._default_client

        async with _default_client_lock:
            # 双重检查，避免重复创建
            if cls._default_client is None or cls._default_client.is_closed:
                cls._default_client = httpx.AsyncClient(
                    timeout=_default_timeout(),
                    limits=_default_limits(),
                    follow_redirects=True,
                )
                logger.info(
                    f"全局HTTP客户端池已初始化: "
                    f"max_connections={config.http_max_connections}, "
                    f"keepalive={config.http_keepalive_connections}, "
                    f"keepalive_expiry={config.http_keepalive_expiry}s"
                )
        return cls._default_client

    @classmethod
    async def close_all(cls) -> None:
        """关闭所有HTTP客户端"""
        if cls._default_client is not None:
            await cls._default_client.aclose()
            cls._default_client = None
            logger.info("默认HTTP客户端已关闭")

    @classmethod
    @asynccontextmanager
    async def get_temp_client(cls, **kwargs: Any) -> Any:
        """
        获取临时HTTP客户端(上下文管理器)

        用法:
            async with HTTPClientPool.get_temp_client() as client:
                response = await client.head('http://localhost:3001/health')
        """
        client_config: dict[str, Any] = {"timeout": _default_timeout()}
        client_config.update(kwargs)

        client = httpx.AsyncClient(**client_config)
        try:
            yield client
        finally:
            await client.aclose()


async def close_http_clients() -> None:
    """关闭所有HTTP客户端的便捷函数"""
    await HTTPClientPool.close_all()
