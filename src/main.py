"""
AI 图表生成服务主应用入口

中间件顺序（由外到内）：
CORS -> 请求日志 -> 限流 -> 请求截止时间 -> 路由
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.public import diagrams, health
from src.clients.http_client import close_http_clients
from src.config import Config, config
from src.core.context import AppContext, build_context
from src.core.error_utils import extract_error_message
from src.core.exceptions import DiagramServiceError, ErrorCode
from src.core.logger import logger
from src.middleware.rate_limit import RateLimitMiddleware, ThrottleRule
from src.middleware.request_deadline import RequestDeadlineMiddleware
from src.middleware.request_logging import RequestLoggingMiddleware


def _error_body(message: str, code: ErrorCode | str, retry_after: float | None = None) -> dict:
    body: dict = {
        "status": "error",
        "message": message,
        "code": code.value if isinstance(code, ErrorCode) else code,
    }
    if retry_after is not None:
        body["retryAfter"] = retry_after
    return body


async def service_error_handler(request: Request, exc: DiagramServiceError) -> JSONResponse:
    logger.warning(
        f"{request.method} {request.url.path} 失败 [{exc.code.value}]: "
        f"{extract_error_message(exc.original_error or exc)}"
    )
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, round(exc.retry_after)))
    return JSONResponse(
        _error_body(exc.message, exc.code, exc.retry_after),
        status_code=exc.status_code,
        headers=headers or None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "请求参数无效"
    if errors:
        # pydantic 的 ValueError 消息带 "Value error, " 前缀
        raw = str(errors[0].get("msg", message))
        message = raw.removeprefix("Value error, ")
    return JSONResponse(_error_body(message, ErrorCode.VALIDATION_ERROR), status_code=422)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} 出现未处理异常: {exc}")
    return JSONResponse(
        _error_body("图表生成过程中出现内部错误", ErrorCode.INTERNAL_ERROR),
        status_code=500,
    )


def create_app(cfg: Config | None = None, context: AppContext | None = None) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        cfg: 服务配置，默认使用全局 config
        context: 预先构建的应用上下文（测试注入），默认按配置构建
    """
    cfg = cfg or config
    ctx = context or build_context(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("=" * 60)
        logger.info(f"启动 {cfg.service_name}")
        for key, value in cfg.describe().items():
            logger.info(f"  {key}: {value}")
        if not cfg.anthropic_api_key:
            logger.warning("未设置 ANTHROPIC_API_KEY，图表生成请求将返回 LLM_CONFIG_ERROR")

        ctx.file_store.initialize()
        # 启动时探测一次转换器，结果写入探测缓存供健康检查读取
        await ctx.probe_cache.is_available()
        await ctx.maintenance.start()
        logger.info("=" * 60)
        try:
            yield
        finally:
            logger.info("正在关闭服务...")
            await ctx.maintenance.stop()
            await close_http_clients()
            logger.info("服务已关闭")

    app = FastAPI(
        title="AI Diagram Generator",
        description="根据自然语言描述生成 Draw.io 图表",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = ctx

    app.add_exception_handler(DiagramServiceError, service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health.router)
    app.include_router(diagrams.router)

    # add_middleware 后添加的在外层
    app.add_middleware(RequestDeadlineMiddleware, timeout=cfg.request_timeout)
    if cfg.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            rules=[
                ThrottleRule(ctx.global_throttle),
                ThrottleRule(ctx.api_throttle, path_prefix="/api"),
            ],
            trust_proxy_headers=cfg.trust_proxy_headers,
        )
    app.add_middleware(RequestLoggingMiddleware, slow_threshold=cfg.slow_request_threshold)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
            "X-Response-Time",
        ],
    )

    return app


def main() -> None:
    uvicorn.run(
        "src.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
