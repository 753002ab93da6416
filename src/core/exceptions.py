"""
服务异常定义

服务端所有可预期的失败都以 DiagramServiceError 的子类抛出，
由 API 层统一转换为 {status: "error", message, code} 响应。
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """错误码（对外响应的 code 字段）"""

    API_KEY_MISSING = "API_KEY_MISSING"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    INVALID_XML = "INVALID_XML"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    LLM_CONFIG_ERROR = "LLM_CONFIG_ERROR"
    CONVERSION_ERROR = "CONVERSION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_EXPIRED = "FILE_EXPIRED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# 错误码 -> HTTP 状态码
_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.RATE_LIMIT_ERROR: 429,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.QUOTA_EXCEEDED: 402,
    ErrorCode.API_KEY_MISSING: 401,
    ErrorCode.INVALID_RESPONSE: 422,
    ErrorCode.INVALID_XML: 422,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CONNECTION_ERROR: 503,
    ErrorCode.TIMEOUT_ERROR: 503,
    ErrorCode.REQUEST_TIMEOUT: 408,
    ErrorCode.FILE_NOT_FOUND: 404,
    ErrorCode.FILE_EXPIRED: 410,
}


def status_for_code(code: ErrorCode | str) -> int:
    """获取错误码对应的 HTTP 状态码，未知错误码返回 500"""
    try:
        return _STATUS_BY_CODE.get(ErrorCode(code), 500)
    except ValueError:
        return 500


class DiagramServiceError(Exception):
    """服务端异常基类"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        *,
        retry_after: float | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after = retry_after
        self.original_error = original_error

    @property
    def status_code(self) -> int:
        return status_for_code(self.code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class LLMError(DiagramServiceError):
    """模型调用失败"""


class LLMConfigError(LLMError):
    """模型服务配置缺失（如未设置 API Key）"""

    def __init__(self, message: str = "AI 服务配置有问题，请联系管理员") -> None:
        super().__init__(message, ErrorCode.LLM_CONFIG_ERROR)


class ConversionError(DiagramServiceError):
    """预览图转换失败（由编排层吸收为警告，不直接返回给客户端）"""

    def __init__(self, message: str, *, original_error: BaseException | None = None) -> None:
        super().__init__(message, ErrorCode.CONVERSION_ERROR, original_error=original_error)


class FileNotFoundException(DiagramServiceError):
    """临时文件不存在"""

    def __init__(self, file_id: str) -> None:
        super().__init__("文件不存在", ErrorCode.FILE_NOT_FOUND)
        self.file_id = file_id


class FileExpiredException(DiagramServiceError):
    """临时文件已过期"""

    def __init__(self, file_id: str) -> None:
        super().__init__("文件已过期", ErrorCode.FILE_EXPIRED)
        self.file_id = file_id


class RequestTimeoutError(TimeoutError):
    """客户端请求超过截止时间（ResilientFetch 抛出）"""

    def __init__(self, timeout: float, url: str | None = None) -> None:
        super().__init__("Request timed out")
        self.timeout = timeout
        self.url = url
