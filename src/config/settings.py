"""
服务配置

所有配置项均从环境变量读取，未设置时使用 constants 中的默认值。
"""

from __future__ import annotations

import os
from pathlib import Path

from src.config.constants import (
    CacheDefaults,
    CapabilityDefaults,
    ConverterDefaults,
    LLMDefaults,
    RateLimitDefaults,
    RequestDefaults,
    StorageDefaults,
)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


class Config:
    """服务配置（进程启动时构建一次）"""

    def __init__(self) -> None:
        # 服务
        self.service_name = os.getenv("SERVICE_NAME", "ai-diagram-generator-backend")
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "3001"))
        self.frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")
        self.environment = os.getenv("ENVIRONMENT", "development")

        # 模型
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY")
        self.anthropic_base_url = os.getenv("ANTHROPIC_BASE_URL", LLMDefaults.BASE_URL)
        self.anthropic_model = os.getenv("ANTHROPIC_MODEL", LLMDefaults.MODEL)
        self.anthropic_api_version = os.getenv("ANTHROPIC_API_VERSION", LLMDefaults.API_VERSION)
        self.llm_max_tokens = int(os.getenv("LLM_MAX_TOKENS", str(LLMDefaults.MAX_TOKENS)))
        self.llm_temperature = float(os.getenv("LLM_TEMPERATURE", str(LLMDefaults.TEMPERATURE)))
        self.llm_timeout = float(os.getenv("LLM_TIMEOUT", str(LLMDefaults.TIMEOUT_SECONDS)))

        # 转换器
        self.drawio_cli_path = os.getenv("DRAWIO_CLI_PATH", ConverterDefaults.CLI_PATH)
        self.converter_timeout = float(
            os.getenv("CONVERTER_TIMEOUT", str(ConverterDefaults.CONVERT_TIMEOUT_SECONDS))
        )
        self.converter_probe_timeout = float(
            os.getenv("CONVERTER_PROBE_TIMEOUT", str(CapabilityDefaults.PROBE_TIMEOUT_SECONDS))
        )
        self.converter_probe_ttl = float(
            os.getenv("CONVERTER_PROBE_TTL", str(CapabilityDefaults.PROBE_FRESHNESS_SECONDS))
        )

        # 生成缓存
        self.cache_ttl = float(os.getenv("GENERATION_CACHE_TTL", str(CacheDefaults.TTL_SECONDS)))
        self.cache_max_size = int(
            os.getenv("GENERATION_CACHE_MAX_SIZE", str(CacheDefaults.MAX_SIZE))
        )
        self.cache_sweep_interval = int(
            os.getenv("GENERATION_CACHE_SWEEP_INTERVAL", str(CacheDefaults.SWEEP_INTERVAL_SECONDS))
        )
        # 相同指纹的并发请求是否合并为一次模型调用
        self.single_flight = _env_bool("GENERATION_SINGLE_FLIGHT", False)

        # 临时文件
        self.file_storage_dir = Path(
            os.getenv("FILE_STORAGE_DIR", str(Path(os.getenv("TMPDIR", "/tmp")) / "diagrams"))
        )
        self.file_ttl = float(os.getenv("FILE_TTL", str(StorageDefaults.FILE_TTL_SECONDS)))
        self.file_sweep_interval = int(
            os.getenv("FILE_SWEEP_INTERVAL", str(StorageDefaults.SWEEP_INTERVAL_SECONDS))
        )
        self.file_cache_max_age = int(
            os.getenv("FILE_CACHE_MAX_AGE", str(StorageDefaults.FILE_CACHE_MAX_AGE))
        )

        # 请求处理
        self.request_timeout = float(
            os.getenv("REQUEST_TIMEOUT", str(RequestDefaults.DEADLINE_SECONDS))
        )
        self.slow_request_threshold = float(
            os.getenv("SLOW_REQUEST_THRESHOLD", str(RequestDefaults.SLOW_REQUEST_SECONDS))
        )
        self.max_prompt_length = int(
            os.getenv("MAX_PROMPT_LENGTH", str(RequestDefaults.MAX_PROMPT_LENGTH))
        )

        # 限流
        self.rate_limit_enabled = _env_bool("RATE_LIMIT_ENABLED", True)
        self.rate_limit_max_requests = int(
            os.getenv("RATE_LIMIT_MAX_REQUESTS", str(RateLimitDefaults.GLOBAL_MAX_REQUESTS))
        )
        self.rate_limit_window = float(
            os.getenv("RATE_LIMIT_WINDOW", str(RateLimitDefaults.GLOBAL_WINDOW_SECONDS))
        )
        self.api_rate_limit_max_requests = int(
            os.getenv("API_RATE_LIMIT_MAX_REQUESTS", str(RateLimitDefaults.API_MAX_REQUESTS))
        )
        self.api_rate_limit_window = float(
            os.getenv("API_RATE_LIMIT_WINDOW", str(RateLimitDefaults.API_WINDOW_SECONDS))
        )
        self.rate_limit_max_entries = int(
            os.getenv("RATE_LIMIT_MAX_ENTRIES", str(RateLimitDefaults.MAX_MEMORY_ENTRIES))
        )
        # 仅在会覆盖 X-Real-IP / X-Forwarded-For 的反向代理之后开启
        self.trust_proxy_headers = _env_bool("TRUST_PROXY_HEADERS", False)

        # 出站 HTTP 客户端
        self.http_connect_timeout = float(os.getenv("HTTP_CONNECT_TIMEOUT", "10.0"))
        self.http_read_timeout = float(os.getenv("HTTP_READ_TIMEOUT", "60.0"))
        self.http_write_timeout = float(os.getenv("HTTP_WRITE_TIMEOUT", "60.0"))
        self.http_pool_timeout = float(os.getenv("HTTP_POOL_TIMEOUT", "10.0"))
        self.http_max_connections = int(os.getenv("HTTP_MAX_CONNECTIONS", "100"))
        self.http_keepalive_connections = int(os.getenv("HTTP_KEEPALIVE_CONNECTIONS", "20"))
        self.http_keepalive_expiry = float(os.getenv("HTTP_KEEPALIVE_EXPIRY", "30.0"))

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def describe(self) -> dict[str, object]:
        """用于启动日志的配置摘要（不含密钥）"""
        return {
            "environment": self.environment,
            "port": self.port,
            "anthropic_api_key": (
                f"已设置 ({len(self.anthropic_api_key)} chars)" if self.anthropic_api_key else "未设置"
            ),
            "model": self.anthropic_model,
            "drawio_cli_path": self.drawio_cli_path,
            "frontend_url": self.frontend_url,
        }


config = Config()
