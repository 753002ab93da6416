"""
图表生成编排

generate(prompt) 的流程：
1. 计算提示词指纹，命中缓存则直接返回缓存的产物（cached=True）
2. 未命中时调用模型生成 XML，保存 .drawio 文件
3. 通过 CapabilityProbeCache 判断转换器是否可用，可用则渲染 PNG 预览
4. 预览不可用或渲染失败不影响整体成功，只在结果中附带警告
5. 把产物写入缓存后返回

模型错误（LLMError）原样向上抛出，由 API 层统一转换为错误响应。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.core.exceptions import ConversionError
from src.core.logger import logger
from src.services.cache.generation_cache import GenerationCache, compute_fingerprint

if TYPE_CHECKING:
    from src.services.capability.probe_cache import CapabilityProbeCache
    from src.services.converter.drawio_cli import DiagramConverter
    from src.services.llm.base import DiagramModel
    from src.services.storage.file_store import TempFileStore

PREVIEW_UNAVAILABLE_REASON = "未安装 Draw.io CLI 或不在 PATH 中，已跳过 PNG 生成"


@dataclass(frozen=True)
class Artifact:
    """一次成功生成的产物（缓存中保存的值）"""

    fingerprint: str
    drawio_file_id: str
    image_file_id: str | None = None
    warning: str | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def has_preview(self) -> bool:
        return self.image_file_id is not None


@dataclass(frozen=True)
class GenerationResult:
    artifact: Artifact
    cached: bool = False

    @property
    def message(self) -> str:
        if self.artifact.warning:
            return self.artifact.warning
        return "图表生成成功"


def preview_warning(reason: str) -> str:
    return f"图表已成功生成，但预览图生成失败: {reason}"


class GenerationOrchestrator:
    """把缓存、能力探测与两个外部协作方组合成完整的生成流程"""

    def __init__(
        self,
        cache: GenerationCache[Artifact],
        probe_cache: CapabilityProbeCache,
        model: DiagramModel,
        converter: DiagramConverter,
        file_store: TempFileStore,
        *,
        single_flight: bool = False,
    ) -> None:
        self.cache = cache
        self.probe_cache = probe_cache
        self.model = model
        self.converter = converter
        self.file_store = file_store
        self.single_flight = single_flight
        # 指纹 -> 进行中的生成任务（仅 single_flight 开启时使用）
        self._inflight: dict[str, asyncio.Future[Artifact]] = {}

    async def generate(self, prompt: str) -> GenerationResult:
        fingerprint = compute_fingerprint(prompt)

        cached = self._lookup(fingerprint)
        if cached is not None:
            logger.info("生成缓存命中: {}", fingerprint)
            return GenerationResult(artifact=cached, cached=True)

        if not self.single_flight:
            artifact = await self._produce(fingerprint, prompt)
            return GenerationResult(artifact=artifact)

        inflight = self._inflight.get(fingerprint)
        if inflight is not None:
            logger.info("合并相同指纹的并发请求: {}", fingerprint)
            # shield: 某个等待方被取消不应取消共享的生成任务
            artifact = await asyncio.shield(inflight)
            return GenerationResult(artifact=artifact, cached=True)

        task = asyncio.ensure_future(self._produce(fingerprint, prompt))
        self._inflight[fingerprint] = task
        task.add_done_callback(lambda _: self._inflight.pop(fingerprint, None))
        artifact = await asyncio.shield(task)
        return GenerationResult(artifact=artifact)

    def _lookup(self, fingerprint: str) -> Artifact | None:
        artifact = self.cache.get(fingerprint)
        if artifact is None:
            return None
        if not self.file_store.exists(artifact.drawio_file_id):
            # 文件已被清理的缓存条目不可再用
            logger.debug("缓存条目的文件已失效，丢弃: {}", fingerprint)
            self.cache.delete(fingerprint)
            return None
        if artifact.image_file_id and not self.file_store.exists(artifact.image_file_id):
            self.cache.delete(fingerprint)
            return None
        return artifact

    async def _produce(self, fingerprint: str, prompt: str) -> Artifact:
        started = time.monotonic()
        xml = await self.model.generate_xml(prompt)
        drawio_file_id = self.file_store.save_drawio(xml)

        image_file_id, warning = await self._render_preview(drawio_file_id)

        artifact = Artifact(
            fingerprint=fingerprint,
            drawio_file_id=drawio_file_id,
            image_file_id=image_file_id,
            warning=warning,
        )
        self.cache.put(fingerprint, artifact)
        logger.info(
            "图表生成完成: {} (preview={}, {:.2f}s)",
            fingerprint,
            artifact.has_preview,
            time.monotonic() - started,
        )
        return artifact

    async def _render_preview(self, drawio_file_id: str) -> tuple[str | None, str | None]:
        if not await self.probe_cache.is_available():
            logger.warning("Draw.io CLI 不可用，跳过 PNG 生成")
            return None, preview_warning(PREVIEW_UNAVAILABLE_REASON)

        try:
            png = await self.converter.render_png(self.file_store.get_file_path(drawio_file_id))
        except ConversionError as e:
            logger.warning("PNG 生成失败: {}", e.message)
            return None, preview_warning(e.message)
        except Exception as e:
            logger.exception("PNG 生成出现意外错误")
            return None, preview_warning(str(e) or type(e).__name__)

        return self.file_store.save_png(png), None
