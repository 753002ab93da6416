"""
图表生成相关的API模型
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from src.config import config

# 保留换行与制表符，去除其余控制字符
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(text: str) -> str:
    return _CONTROL_CHARS.sub("", text).strip()


class DiagramRequest(BaseModel):
    """图表生成请求"""

    prompt: str = Field(..., description="图表的自然语言描述")

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, value: str) -> str:
        value = sanitize_text(value)
        if not value:
            raise ValueError("请输入图表描述")
        if len(value) > config.max_prompt_length:
            raise ValueError(f"图表描述不能超过 {config.max_prompt_length} 个字符")
        return value


class DiagramResponse(BaseModel):
    """图表生成成功响应"""

    status: Literal["success"] = "success"
    message: str = Field(..., description="结果说明（预览生成失败时为警告信息）")
    downloadUrl: str = Field(..., description=".drawio 文件下载地址")
    imageUrl: str | None = Field(None, description="PNG 预览地址，预览不可用时为空")
    cached: bool = Field(False, description="是否命中生成缓存")


class ErrorResponse(BaseModel):
    """统一错误响应"""

    status: Literal["error"] = "error"
    message: str
    code: str
    retryAfter: float | None = Field(None, description="建议的重试等待秒数（仅限流时返回）")


class CacheStatus(BaseModel):
    size: int
    max_size: int


class HealthResponse(BaseModel):
    """健康检查响应"""

    status: Literal["ok"] = "ok"
    timestamp: str
    service: str
    cache: CacheStatus
    converter_available: bool | None = Field(
        None, description="最近一次转换器探测结果，尚未探测时为空"
    )
