"""
系统维护定时任务调度器

包含以下任务：
- 生成缓存清理：定期删除已过期的缓存条目（读取时也会惰性过期）
- 临时文件清理：删除过期的 .drawio / PNG 文件

使用 APScheduler 进行任务调度，应用关闭时移除任务并停止调度器。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.core.logger import logger
from src.services.system.scheduler import SchedulerService, get_scheduler

if TYPE_CHECKING:
    from src.services.cache.generation_cache import GenerationCache
    from src.services.storage.file_store import TempFileStore


class MaintenanceScheduler:
    """系统维护任务调度器"""

    CACHE_SWEEP_JOB_ID = "generation_cache_sweep"
    FILE_SWEEP_JOB_ID = "temp_file_sweep"

    def __init__(
        self,
        cache: GenerationCache[Any],
        file_store: TempFileStore,
        *,
        cache_sweep_interval: float,
        file_sweep_interval: float,
        scheduler: SchedulerService | None = None,
    ) -> None:
        self.cache = cache
        self.file_store = file_store
        self.cache_sweep_interval = cache_sweep_interval
        self.file_sweep_interval = file_sweep_interval
        self._scheduler = scheduler or get_scheduler()
        self.running = False

    async def start(self) -> None:
        """启动调度器"""
        if self.running:
            logger.warning("Maintenance scheduler already running")
            return

        self.running = True
        self._scheduler.add_interval_job(
            self._scheduled_cache_sweep,
            seconds=self.cache_sweep_interval,
            job_id=self.CACHE_SWEEP_JOB_ID,
            name="生成缓存清理",
        )
        self._scheduler.add_interval_job(
            self._scheduled_file_sweep,
            seconds=self.file_sweep_interval,
            job_id=self.FILE_SWEEP_JOB_ID,
            name="临时文件清理",
        )
        logger.info("系统维护调度器已启动")

    async def stop(self) -> None:
        """停止调度器"""
        if not self.running:
            return

        self.running = False
        self._scheduler.remove_job(self.CACHE_SWEEP_JOB_ID)
        self._scheduler.remove_job(self.FILE_SWEEP_JOB_ID)
        self._scheduler.stop()
        logger.info("系统维护调度器已停止")

    async def _scheduled_cache_sweep(self) -> None:
        try:
            removed = self.cache.cleanup_expired()
            if removed:
                logger.info(f"生成缓存清理完成: 删除 {removed} 个过期条目，剩余 {len(self.cache)}")
        except Exception as e:
            logger.exception(f"生成缓存清理失败: {e}")

    async def _scheduled_file_sweep(self) -> None:
        try:
            self.file_store.sweep_expired()
        except Exception as e:
            logger.exception(f"临时文件清理失败: {e}")
