"""
错误分类器

把任意失败（异常、HTTP 状态码、结构化错误响应）归一为 ErrorInfo：
类别、是否可重试、面向用户的消息和建议操作。

纯逻辑，无副作用，客户端与服务端共用。
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from src.core.error_utils import extract_payload_message
from src.core.exceptions import (
    DiagramServiceError,
    ErrorCode,
    RequestTimeoutError,
    status_for_code,
)


class ErrorCategory(str, Enum):
    """错误类别"""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class ClientErrorKind(str, Enum):
    """客户端错误细分"""

    BAD_INPUT = "bad_input"
    RATE_LIMITED = "rate_limited"
    QUOTA = "quota"
    AUTH = "auth"


class ErrorAction:
    """建议用户采取的操作"""

    CHECK_NETWORK = "检查网络连接后重试"
    WAIT_AND_RETRY = "稍等片刻后重试"
    REVISE_INPUT = "修改输入内容后重试"
    SHORTEN_INPUT = "缩短输入内容后重试"
    CONTACT_ADMIN = "请联系管理员"


@dataclass(frozen=True)
class ErrorInfo:
    """归一化的错误信息（构造后不可变）"""

    message: str
    category: ErrorCategory
    retryable: bool
    user_action: str | None = None
    client_kind: ClientErrorKind | None = None
    retry_after: float | None = None  # 仅 429：建议退避秒数

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "userAction": self.user_action,
            "clientKind": self.client_kind.value if self.client_kind else None,
            "retryAfter": self.retry_after,
        }


# 网络层故障的消息特征（小写匹配）
_NETWORK_INDICATORS = (
    "network",
    "fetch",
    "connection refused",
    "connection reset",
    "connection aborted",
    "econnreset",
    "econnrefused",
    "enotfound",
    "name or service not known",
)

_TIMEOUT_INDICATORS = ("timeout", "timed out")

_NETWORK_CODES = frozenset({ErrorCode.CONNECTION_ERROR})
_TIMEOUT_CODES = frozenset({ErrorCode.TIMEOUT_ERROR, ErrorCode.REQUEST_TIMEOUT})
_TIMEOUT_CODE_VALUES = frozenset(code.value for code in _TIMEOUT_CODES)


def _timeout_info() -> ErrorInfo:
    return ErrorInfo(
        message="请求超时，服务器可能较为繁忙，请稍后重试",
        category=ErrorCategory.TIMEOUT,
        retryable=True,
        user_action=ErrorAction.WAIT_AND_RETRY,
    )


class ErrorClassifier:
    """
    错误分类器（纯函数集合）

    规则按顺序匹配，先命中者生效：
    1. 网络层故障 -> network，可重试
    2. 截止时间到期 -> timeout，可重试
    3. HTTP >= 500 -> server，可重试
    4. HTTP 4xx -> client，可重试（输入问题建议修改输入，429 附带退避时间）
    5. 其他 -> unknown，不可重试
    """

    @classmethod
    def classify(
        cls,
        failure: BaseException | str | None,
        status_code: int | None = None,
        *,
        retry_after: float | None = None,
    ) -> ErrorInfo:
        if status_code is None:
            status_code = cls._status_of(failure)
        if retry_after is None:
            retry_after = getattr(failure, "retry_after", None)

        if isinstance(failure, (BaseException, str)):
            if cls.is_network_error(failure):
                return ErrorInfo(
                    message="无法连接到服务，请确认网络连接稳定后重试",
                    category=ErrorCategory.NETWORK,
                    retryable=True,
                    user_action=ErrorAction.CHECK_NETWORK,
                )
            if cls.is_timeout_error(failure):
                return _timeout_info()

        if status_code is not None and (
            cls.is_server_error(status_code) or cls.is_client_error(status_code)
        ):
            return cls.classify_status(status_code, retry_after=retry_after)

        if isinstance(failure, str) and failure.strip():
            return ErrorInfo(
                message=failure.strip(),
                category=ErrorCategory.UNKNOWN,
                retryable=False,
            )

        return ErrorInfo(
            message="发生了未知错误",
            category=ErrorCategory.UNKNOWN,
            retryable=False,
        )

    @classmethod
    def classify_status(cls, status_code: int, *, retry_after: float | None = None) -> ErrorInfo:
        """仅根据 HTTP 状态码分类（规则 2、3、4）"""
        if status_code == 408:
            return _timeout_info()
        if cls.is_server_error(status_code):
            return ErrorInfo(
                message="服务器出现临时问题，请稍后重试",
                category=ErrorCategory.SERVER,
                retryable=True,
                user_action=ErrorAction.WAIT_AND_RETRY,
            )

        if not cls.is_client_error(status_code):
            return ErrorInfo(
                message=f"未预期的响应状态: HTTP {status_code}",
                category=ErrorCategory.UNKNOWN,
                retryable=False,
            )

        if status_code == 429:
            return ErrorInfo(
                message="请求过于频繁，请稍后重试",
                category=ErrorCategory.CLIENT,
                retryable=True,
                user_action=ErrorAction.WAIT_AND_RETRY,
                client_kind=ClientErrorKind.RATE_LIMITED,
                retry_after=retry_after,
            )
        if status_code == 413:
            return ErrorInfo(
                message="输入内容过长，请缩短后重试",
                category=ErrorCategory.CLIENT,
                retryable=True,
                user_action=ErrorAction.SHORTEN_INPUT,
                client_kind=ClientErrorKind.BAD_INPUT,
            )
        if status_code in (400, 422):
            return ErrorInfo(
                message="输入内容有问题，请检查图表描述后重试",
                category=ErrorCategory.CLIENT,
                retryable=True,
                user_action=ErrorAction.REVISE_INPUT,
                client_kind=ClientErrorKind.BAD_INPUT,
            )
        if status_code == 402:
            return ErrorInfo(
                message="AI 服务已达到使用上限，请联系管理员",
                category=ErrorCategory.CLIENT,
                retryable=True,
                user_action=ErrorAction.CONTACT_ADMIN,
                client_kind=ClientErrorKind.QUOTA,
            )
        if status_code in (401, 403):
            return ErrorInfo(
                message="AI 服务认证失败，请检查配置",
                category=ErrorCategory.CLIENT,
                retryable=True,
                user_action=ErrorAction.CONTACT_ADMIN,
                client_kind=ClientErrorKind.AUTH,
            )
        return ErrorInfo(
            message="请求有问题，请检查输入内容",
            category=ErrorCategory.CLIENT,
            retryable=True,
            user_action=ErrorAction.REVISE_INPUT,
            client_kind=ClientErrorKind.BAD_INPUT,
        )

    @classmethod
    def from_response(
        cls,
        status_code: int,
        payload: Any = None,
        *,
        retry_after: float | None = None,
    ) -> ErrorInfo:
        """
        从错误响应中提取 ErrorInfo

        响应体带 message 时使用服务端消息，否则退回到状态码对应的通用消息。
        """
        base = cls.classify_status(status_code, retry_after=retry_after)
        if isinstance(payload, dict) and payload.get("code") in _TIMEOUT_CODE_VALUES:
            # 服务端截止时间到期（408 REQUEST_TIMEOUT 等）按超时处理
            base = _timeout_info()
        if isinstance(payload, dict) and retry_after is None:
            payload_retry = payload.get("retryAfter")
            is_rate_limited = base.client_kind == ClientErrorKind.RATE_LIMITED
            if is_rate_limited and isinstance(payload_retry, (int, float)):
                base = cls.classify_status(status_code, retry_after=float(payload_retry))

        message = extract_payload_message(payload)
        if not message:
            return base

        return ErrorInfo(
            message=message,
            category=base.category,
            retryable=base.retryable,
            user_action=base.user_action,
            client_kind=base.client_kind,
            retry_after=base.retry_after,
        )

    @staticmethod
    def http_status_for(code: ErrorCode | str) -> int:
        """服务端错误码 -> 对外 HTTP 状态码"""
        return status_for_code(code)

    @staticmethod
    def is_network_error(error: BaseException | str) -> bool:
        if isinstance(error, DiagramServiceError):
            return error.code in _NETWORK_CODES
        if isinstance(error, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)):
            return False
        if isinstance(error, (httpx.TransportError, ConnectionError, socket.gaierror)):
            return True
        message = str(error).lower()
        return any(indicator in message for indicator in _NETWORK_INDICATORS)

    @staticmethod
    def is_timeout_error(error: BaseException | str) -> bool:
        if isinstance(error, DiagramServiceError):
            return error.code in _TIMEOUT_CODES
        if isinstance(
            error,
            (RequestTimeoutError, httpx.TimeoutException, TimeoutError, asyncio.TimeoutError),
        ):
            return True
        message = str(error).lower()
        return any(indicator in message for indicator in _TIMEOUT_INDICATORS)

    @staticmethod
    def is_server_error(status_code: int | None) -> bool:
        return status_code is not None and status_code >= 500

    @staticmethod
    def is_client_error(status_code: int | None) -> bool:
        return status_code is not None and 400 <= status_code < 500

    @staticmethod
    def _status_of(failure: Any) -> int | None:
        if isinstance(failure, httpx.HTTPStatusError):
            return failure.response.status_code
        status = getattr(failure, "status_code", None)
        return status if isinstance(status, int) else None


def classify_error(
    failure: BaseException | str | None, status_code: int | None = None
) -> ErrorInfo:
    """分类错误（便捷函数）"""
    return ErrorClassifier.classify(failure, status_code)
