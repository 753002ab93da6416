"""
图表生成公共 API

- POST /api/generate-diagram: 根据自然语言描述生成 Draw.io 图表
- GET  /api/files/{file_id}: 下载生成的 .drawio 文件或 PNG 预览
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

from src.core.context import AppContext, get_app_context
from src.core.logger import logger
from src.models.diagram import DiagramRequest, DiagramResponse, ErrorResponse
from src.services.storage.file_store import build_file_url
from src.utils.request_utils import get_client_ip

router = APIRouter(prefix="/api", tags=["Diagrams"])

_ERROR = {"model": ErrorResponse}


@router.post(
    "/generate-diagram",
    response_model=DiagramResponse,
    responses={status: _ERROR for status in (401, 402, 408, 422, 429, 500, 503)},
)
async def generate_diagram(
    body: DiagramRequest,
    request: Request,
    ctx: AppContext = Depends(get_app_context),
) -> DiagramResponse:
    """
    生成图表

    调用模型把描述转换为 Draw.io XML，保存为 .drawio 文件，并在 Draw.io CLI 可用时渲染 PNG 预览。
    相同描述在缓存有效期内直接返回上次的结果。

    **请求体**
    - prompt: 图表描述（去除控制字符后 1 到 MAX_PROMPT_LENGTH 个字符）

    **返回字段**
    - status: 固定为 success
    - message: 结果说明；预览生成失败时为警告信息
    - downloadUrl: .drawio 文件下载地址
    - imageUrl: PNG 预览地址，预览不可用时为空
    - cached: 是否命中生成缓存

    **错误**
    - 422 VALIDATION_ERROR / INVALID_RESPONSE / INVALID_XML
    - 429 RATE_LIMIT_ERROR（附带 retryAfter），402 QUOTA_EXCEEDED，401 API_KEY_MISSING
    - 503 CONNECTION_ERROR / TIMEOUT_ERROR，500 LLM_CONFIG_ERROR / INTERNAL_ERROR
    """
    logger.info(
        "收到图表生成请求: client={}, length={}, preview={!r}",
        get_client_ip(request, trust_proxy_headers=ctx.config.trust_proxy_headers),
        len(body.prompt),
        body.prompt[:100],
    )

    result = await ctx.orchestrator.generate(body.prompt)
    artifact = result.artifact
    base_url = str(request.base_url)

    return DiagramResponse(
        message=result.message,
        downloadUrl=build_file_url(artifact.drawio_file_id, base_url),
        imageUrl=(
            build_file_url(artifact.image_file_id, base_url) if artifact.image_file_id else None
        ),
        cached=result.cached,
    )


@router.get("/files/{file_id}", responses={404: _ERROR, 410: _ERROR})
async def get_file(file_id: str, ctx: AppContext = Depends(get_app_context)) -> FileResponse:
    """
    下载临时文件

    PNG 以 inline 方式返回（用于页面预览），.drawio 以 attachment 方式返回（触发下载）。

    **错误**
    - 404 FILE_NOT_FOUND: 文件不存在
    - 410 FILE_EXPIRED: 文件已过期
    """
    stored = ctx.file_store.resolve(file_id)
    return FileResponse(
        stored.path,
        media_type=stored.media_type,
        filename=stored.original_name,
        content_disposition_type=stored.disposition,
        headers={"Cache-Control": f"private, max-age={ctx.config.file_cache_max_age}"},
    )
