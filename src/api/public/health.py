"""
健康检查 API
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from src.core.context import AppContext, get_app_context
from src.models.diagram import CacheStatus, HealthResponse

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health_check(ctx: AppContext = Depends(get_app_context)) -> HealthResponse:
    """
    服务健康检查

    转换器状态取最近一次缓存的探测结果，本接口不会触发新的探测。

    **返回字段**
    - status: 固定为 ok
    - timestamp: 当前时间（ISO 8601）
    - service: 服务名称
    - cache: 生成缓存的当前条目数与容量
    - converter_available: 最近一次 Draw.io CLI 探测结果，尚未探测时为空
    """
    record = ctx.probe_cache.record
    return HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=ctx.config.service_name,
        cache=CacheStatus(size=len(ctx.cache), max_size=ctx.cache.max_size),
        converter_available=record.available if record else None,
    )
