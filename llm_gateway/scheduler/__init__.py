"""
Background scheduler
后台定时任务
"""

from .scheduler import TaskScheduler
from .tasks import BudgetRolloverWatcher, check_budgets, register_maintenance_tasks

__all__ = ["TaskScheduler", "BudgetRolloverWatcher", "check_budgets", "register_maintenance_tasks"]
