"""
应用上下文

进程启动时一次性构建所有长生命周期的状态对象（缓存、探测缓存、限流器、文件存储等），
通过 app.state.context 交给请求处理器使用，不在首次请求时惰性创建。
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from src.config import Config
from src.services.cache.generation_cache import GenerationCache
from src.services.capability.probe_cache import CapabilityProbeCache
from src.services.converter.drawio_cli import DiagramConverter, DrawioCliConverter
from src.services.llm.anthropic_model import AnthropicDiagramModel
from src.services.llm.base import DiagramModel
from src.services.orchestration.generation import Artifact, GenerationOrchestrator
from src.services.rate_limit.throttle import RequestThrottle
from src.services.storage.file_store import TempFileStore
from src.services.system.maintenance_scheduler import MaintenanceScheduler
from src.services.system.scheduler import SchedulerService


@dataclass
class AppContext:
    config: Config
    cache: GenerationCache[Artifact]
    probe_cache: CapabilityProbeCache
    model: DiagramModel
    converter: DiagramConverter
    file_store: TempFileStore
    orchestrator: GenerationOrchestrator
    global_throttle: RequestThrottle
    api_throttle: RequestThrottle
    maintenance: MaintenanceScheduler


def build_context(
    cfg: Config,
    *,
    model: DiagramModel | None = None,
    converter: DiagramConverter | None = None,
    scheduler: SchedulerService | None = None,
) -> AppContext:
    """根据配置构建应用上下文，测试可注入替代的模型与转换器"""
    model = model or AnthropicDiagramModel.from_config(cfg)
    converter = converter or DrawioCliConverter.from_config(cfg)

    cache: GenerationCache[Artifact] = GenerationCache(
        max_size=cfg.cache_max_size, ttl_seconds=cfg.cache_ttl
    )
    probe_cache = CapabilityProbeCache(
        converter.is_available,
        freshness_seconds=cfg.converter_probe_ttl,
        probe_timeout=cfg.converter_probe_timeout,
        name="drawio-cli",
    )
    file_store = TempFileStore(cfg.file_storage_dir, cfg.file_ttl)

    orchestrator = GenerationOrchestrator(
        cache,
        probe_cache,
        model,
        converter,
        file_store,
        single_flight=cfg.single_flight,
    )

    return AppContext(
        config=cfg,
        cache=cache,
        probe_cache=probe_cache,
        model=model,
        converter=converter,
        file_store=file_store,
        orchestrator=orchestrator,
        global_throttle=RequestThrottle(
            cfg.rate_limit_max_requests,
            cfg.rate_limit_window,
            name="global",
            max_entries=cfg.rate_limit_max_entries,
        ),
        api_throttle=RequestThrottle(
            cfg.api_rate_limit_max_requests,
            cfg.api_rate_limit_window,
            name="api",
            max_entries=cfg.rate_limit_max_entries,
        ),
        maintenance=MaintenanceScheduler(
            cache,
            file_store,
            cache_sweep_interval=cfg.cache_sweep_interval,
            file_sweep_interval=cfg.file_sweep_interval,
            scheduler=scheduler,
        ),
    )


def get_app_context(request: Request) -> AppContext:
    """FastAPI 依赖：获取启动时构建的应用上下文"""
    return request.app.state.context
