from .maintenance_scheduler import MaintenanceScheduler
from .scheduler import SchedulerService, get_scheduler

__all__ = ["MaintenanceScheduler", "SchedulerService", "get_scheduler"]
