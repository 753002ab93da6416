"""
错误消息处理工具函数
"""

from __future__ import annotations

from typing import Any


def extract_error_message(error: BaseException, status_code: int | None = None) -> str:
    """
    从异常中提取用于日志的错误消息，优先使用上游原始响应

    Args:
        error: 异常对象
        status_code: 可选的 HTTP 状态码

    Returns:
        错误消息字符串
    """
    upstream_response = getattr(error, "upstream_response", None)
    if isinstance(upstream_response, str) and upstream_response.strip():
        return upstream_response

    # httpx 超时等异常的 str 可能为空
    error_str = str(error) or repr(error)
    if status_code is not None:
        return f"HTTP {status_code}: {error_str}"
    return error_str


def extract_payload_message(payload: Any) -> str | None:
    """
    从结构化错误响应体中提取 message 字段

    支持 {"message": "..."} 与 {"error": {"message": "..."}} 两种形态。
    """
    if not isinstance(payload, dict):
        return None

    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()

    error = payload.get("error")
    if isinstance(error, dict):
        nested = error.get("message")
        if isinstance(nested, str) and nested.strip():
            return nested.strip()

    return None
