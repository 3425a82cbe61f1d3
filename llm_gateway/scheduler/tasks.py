"""
维护任务
预算阈值检查、周期切换时重置告警、上月用量汇总与过期数据清理
"""

from datetime import datetime
from typing import Callable, Optional

from llm_gateway.config_models import BudgetSettings, TasksConfig, UsageConfig
from llm_gateway.services import BudgetService, UsageAggregationService, period_start
from llm_gateway.services.budget_service import PERIODS
from llm_gateway.types import BudgetPeriod
from llm_gateway.utils.logger import get_logger

from .scheduler import TaskScheduler

logger = get_logger(__name__)


class BudgetRolloverWatcher:
    """记录每个周期的起点，起点变化时重置该周期的告警状态"""

    def __init__(
        self,
        budget_service: BudgetService,
        week_start_day: int,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.budget_service = budget_service
        self.week_start_day = week_start_day
        self.clock = clock
        self.current_starts: dict[BudgetPeriod, datetime] = {}

    async def check(self) -> list[BudgetPeriod]:
        """
        Returns:
            本次被重置的周期
        """
        now = self.clock()
        reset = []
        for period in PERIODS:
            start = period_start(period, now, self.week_start_day)
            previous = self.current_starts.get(period)
            self.current_starts[period] = start
            # 首次运行只记录起点
            if previous is not None and previous != start:
                await self.budget_service.reset_budget_alert_status(period)
                reset.append(period)
        return reset


async def check_budgets(budget_service: BudgetService) -> int:
    alerts = await budget_service.check_all_budget_thresholds()
    for alert in alerts:
        logger.warning(
            f"预算告警 {alert.period.value}: 达到 {alert.threshold}% "
            f"(${alert.current_cost:.4f} / ${alert.budget})"
        )
    return len(alerts)


def register_maintenance_tasks(
    scheduler: TaskScheduler,
    budget_service: BudgetService,
    aggregation_service: UsageAggregationService,
    tasks_config: Optional[TasksConfig] = None,
    budget_settings: Optional[BudgetSettings] = None,
    usage_config: Optional[UsageConfig] = None,
) -> BudgetRolloverWatcher:
    """向调度器注册全部维护任务"""
    tasks_config = tasks_config or TasksConfig()
    budget_settings = budget_settings or BudgetSettings()
    usage_config = usage_config or UsageConfig()

    watcher = BudgetRolloverWatcher(budget_service, budget_settings.week_start_day)

    scheduler.add_task(
        "budget_rollover_reset",
        watcher.check,
        tasks_config.budget_reset_interval,
        run_immediately=True,
    )
    scheduler.add_task(
        "budget_threshold_check",
        check_budgets,
        budget_settings.alert_check_interval,
        run_immediately=True,
        budget_service=budget_service,
    )
    scheduler.add_task(
        "monthly_usage_aggregation",
        aggregation_service.aggregate_previous_month,
        tasks_config.aggregation_interval,
    )
    scheduler.add_task(
        "usage_retention_cleanup",
        aggregation_service.cleanup_old_usage_data,
        tasks_config.cleanup_interval,
        retention_days=usage_config.retention_days,
    )
    return watcher
