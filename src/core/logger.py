"""
统一日志系统 - 基于 loguru

日志级别策略:
- DEBUG: 缓存命中/淘汰、探测结果、重试细节
- INFO:  请求处理、图表生成、调度任务状态
- WARNING: 降级处理（无预览图）、限流拒绝、慢请求
- ERROR: 模型调用失败、转换失败、未处理异常

输出策略:
- 控制台: 开发环境=DEBUG, 生产环境=INFO (通过 LOG_LEVEL 覆盖)
- 文件: LOG_DIR 下保存 DEBUG 级别，按大小轮转；LOG_DISABLE_FILE=true 时关闭

使用方式:
    from src.core.logger import logger

    logger.info("图表生成完成: {}", fingerprint)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

IS_PRODUCTION = (
    os.environ.get("ENVIRONMENT", "development").lower() == "production"
    or os.path.exists("/.dockerenv")
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG").upper()

# 测试环境通常关闭文件日志
DISABLE_FILE_LOG = os.getenv("LOG_DISABLE_FILE", "false").lower() == "true"

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
LOG_DIR = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))

CONSOLE_FORMAT_DEV = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{message}</cyan>"
)

CONSOLE_FORMAT_PROD = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

logger.remove()

logger.add(
    sys.stdout,
    format=CONSOLE_FORMAT_PROD if IS_PRODUCTION else CONSOLE_FORMAT_DEV,
    level=LOG_LEVEL,
    colorize=not IS_PRODUCTION,
    backtrace=not IS_PRODUCTION,
    diagnose=not IS_PRODUCTION,
)

if not DISABLE_FILE_LOG:
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    # enqueue=False: 同步写入，gunicorn 单 worker 下足够
    file_log_config = {
        "format": FILE_FORMAT,
        "rotation": "50 MB",
        "retention": "14 days",
        "compression": "gz",
        "enqueue": False,
        "encoding": "utf-8",
        "catch": True,
        "backtrace": not IS_PRODUCTION,
        "diagnose": not IS_PRODUCTION,
    }

    logger.add(  # type: ignore[call-overload]
        LOG_DIR / "app.log",
        level="DEBUG",
        **file_log_config,
    )

    logger.add(  # type: ignore[call-overload]
        LOG_DIR / "error.log",
        level="ERROR",
        **file_log_config,
    )

# 第三方库噪音日志
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

__all__ = ["logger"]
