"""
全局定时任务调度器

基于 APScheduler AsyncIOScheduler，所有周期任务都在应用事件循环内执行。
应用关闭时调用 stop()，取消全部任务以便进程干净退出。
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.core.logger import logger

JobFunc = Callable[[], Awaitable[None]]


class SchedulerService:
    """APScheduler 的薄封装"""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _ensure_started(self) -> AsyncIOScheduler:
        # AsyncIOScheduler 在 start() 时绑定当前事件循环
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(
                job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30}
            )
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("定时任务调度器已启动")
        return self._scheduler

    def add_interval_job(
        self,
        func: JobFunc,
        *,
        seconds: float,
        job_id: str,
        name: str | None = None,
        **kwargs: Any,
    ) -> None:
        """添加（或替换）固定间隔任务"""
        scheduler = self._ensure_started()
        scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=name or job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"已注册定时任务: {name or job_id} (每 {seconds:g}s)")

    def remove_job(self, job_id: str) -> bool:
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug(f"已移除定时任务: {job_id}")
        return True

    def get_job_info(self, job_id: str) -> dict[str, Any] | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(job_id)
        if job is None:
            return None
        return {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("定时任务调度器已停止")
        self._scheduler = None


_scheduler_service: SchedulerService | None = None


def get_scheduler() -> SchedulerService:
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service
