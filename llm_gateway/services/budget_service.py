"""
预算服务
周期预算配置、阈值告警（80% / 100%）以及结合预算的成本路由决策
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from llm_gateway.database import session_scope
from llm_gateway.models import BudgetConfig
from llm_gateway.types import BudgetConfigView, BudgetInput, BudgetPeriod
from llm_gateway.utils.cost_model import is_free_provider, optimize_provider_order
from llm_gateway.utils.logger import get_logger

from .usage_tracker import UsageTracker, period_start

logger = get_logger(__name__)

PERIODS = (BudgetPeriod.DAILY, BudgetPeriod.WEEKLY, BudgetPeriod.MONTHLY)


@dataclass
class BudgetAlert:
    period: BudgetPeriod
    threshold: int  # 80 或 100
    current_cost: float
    budget: float
    percent_used: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.value,
            "threshold": self.threshold,
            "current_cost": self.current_cost,
            "budget": self.budget,
            "percent_used": round(self.percent_used, 2),
        }


@dataclass
class SmartRoutingDecision:
    providers: list[str]
    reason: str
    budget_alert: Optional[BudgetAlert] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers": self.providers,
            "reason": self.reason,
            "budget_alert": self.budget_alert.to_dict() if self.budget_alert else None,
        }


class BudgetService:
    """预算服务"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], usage_tracker: UsageTracker):
        self.session_factory = session_factory
        self.usage_tracker = usage_tracker

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------

    async def get_budget_config(self, period: Union[BudgetPeriod, str]) -> Optional[BudgetConfigView]:
        period = BudgetPeriod(period)
        async with self.session_factory() as session:
            result = await session.execute(
                select(BudgetConfig).where(BudgetConfig.period == period.value)
            )
            config = result.scalar_one_or_none()
            return BudgetConfigView.model_validate(config) if config else None

    async def get_all_budget_configs(self) -> list[BudgetConfigView]:
        async with self.session_factory() as session:
            result = await session.execute(select(BudgetConfig))
            configs = {c.period: BudgetConfigView.model_validate(c) for c in result.scalars().all()}
        return [configs[p.value] for p in PERIODS if p.value in configs]

    async def save_budget_config(self, budget_input: BudgetInput) -> BudgetConfigView:
        """按周期新增或更新预算配置"""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(BudgetConfig).where(BudgetConfig.period == budget_input.period.value)
            )
            config = result.scalar_one_or_none()
            if config is None:
                config = BudgetConfig(period=budget_input.period.value)
                session.add(config)

            config.budget_usd = budget_input.budget_usd
            config.alert_at_80 = budget_input.alert_at_80
            config.alert_at_100 = budget_input.alert_at_100
            await session.flush()
            view = BudgetConfigView.model_validate(config)

        logger.info(f"保存预算配置: {budget_input.period.value} ${budget_input.budget_usd}")
        return view

    # ------------------------------------------------------------------
    # 阈值告警
    # ------------------------------------------------------------------

    async def check_budget_threshold(
        self, period: Union[BudgetPeriod, str], now: Optional[datetime] = None
    ) -> Optional[BudgetAlert]:
        """
        检查周期预算是否达到告警阈值

        告警单调：同一周期内100%告警后不再发出80%告警，每个阈值只告警一次，
        直到 reset_budget_alert_status 被调用。上次告警早于本周期起点时视为已重置，
        因此重启后错过周期切换也不会沿用旧状态。

        Returns:
            需要发出的告警，没有时返回None
        """
        period = BudgetPeriod(period)
        config = await self.get_budget_config(period)
        if config is None or config.budget_usd <= 0:
            return None

        now = now or datetime.now()
        current_cost = await self.usage_tracker.get_current_period_cost(period, now)
        percent_used = current_cost / config.budget_usd * 100

        last_threshold = config.last_alert_threshold
        start = period_start(period, now, self.usage_tracker.week_start_day)
        if config.last_alerted_at is None or config.last_alerted_at < start:
            last_threshold = None

        threshold = None
        if percent_used >= 100 and config.alert_at_100:
            if last_threshold != 100:
                threshold = 100
        elif percent_used >= 80 and config.alert_at_80:
            if last_threshold not in (80, 100):
                threshold = 80

        if threshold is None:
            return None

        await self._update_alert_status(period, threshold, now)
        logger.warning(
            f"预算告警: {period.value} 已使用 {percent_used:.1f}% "
            f"(${current_cost:.4f} / ${config.budget_usd})"
        )
        return BudgetAlert(
            period=period,
            threshold=threshold,
            current_cost=current_cost,
            budget=config.budget_usd,
            percent_used=percent_used,
        )

    async def check_all_budget_thresholds(self, now: Optional[datetime] = None) -> list[BudgetAlert]:
        alerts = []
        for period in PERIODS:
            alert = await self.check_budget_threshold(period, now)
            if alert:
                alerts.append(alert)
        return alerts

    async def reset_budget_alert_status(self, period: Union[BudgetPeriod, str]) -> None:
        """清除周期告警状态（新周期开始时调用）"""
        period = BudgetPeriod(period)
        async with session_scope(self.session_factory) as session:
            await session.execute(
                update(BudgetConfig)
                .where(BudgetConfig.period == period.value)
                .values(last_alerted_at=None, last_alert_threshold=None)
            )
        logger.info(f"重置预算告警状态: {period.value}")

    async def _update_alert_status(self, period: BudgetPeriod, threshold: int, alerted_at: datetime) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(
                update(BudgetConfig)
                .where(BudgetConfig.period == period.value)
                .values(last_alerted_at=alerted_at, last_alert_threshold=threshold)
            )

    # ------------------------------------------------------------------
    # 汇总与路由
    # ------------------------------------------------------------------

    async def get_budget_summary(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """每个周期的预算、已用、百分比与剩余额度"""
        configs = {c.period: c for c in await self.get_all_budget_configs()}

        summary = []
        for period in PERIODS:
            current_cost = await self.usage_tracker.get_current_period_cost(period, now)
            config = configs.get(period)

            if config is None:
                summary.append(
                    {
                        "period": period.value,
                        "budget": 0.0,
                        "current_cost": current_cost,
                        "percent_used": 0.0,
                        "remaining": 0.0,
                        "is_over_budget": False,
                        "alert_at_80": True,
                        "alert_at_100": True,
                    }
                )
                continue

            budget = config.budget_usd
            summary.append(
                {
                    "period": period.value,
                    "budget": budget,
                    "current_cost": current_cost,
                    "percent_used": (current_cost / budget * 100) if budget > 0 else 0.0,
                    "remaining": max(0.0, budget - current_cost),
                    "is_over_budget": current_cost > budget,
                    "alert_at_80": config.alert_at_80,
                    "alert_at_100": config.alert_at_100,
                }
            )
        return summary

    async def filter_by_budget(
        self, provider_types: list[str], now: Optional[datetime] = None
    ) -> list[str]:
        """
        三个周期都设置了预算且全部超支时只保留免费Provider（没有免费Provider时原样返回）
        """
        summary = await self.get_budget_summary(now)
        all_over_budget = all(s["budget"] > 0 and s["is_over_budget"] for s in summary)
        if not all_over_budget:
            return list(provider_types)

        free_providers = [p for p in provider_types if is_free_provider(p)]
        if free_providers:
            logger.warning(f"所有周期预算已超支，仅使用免费Provider: {free_providers}")
            return free_providers
        return list(provider_types)

    async def get_smart_routing_decision(
        self, enabled_types: list[str], feature_type: str, now: Optional[datetime] = None
    ) -> SmartRoutingDecision:
        """
        成本排序 + 预算检查

        每个周期都会检查（可能更新告警状态），返回周期最短的那个告警。
        """
        providers = optimize_provider_order(enabled_types, feature_type)

        alerts = [await self.check_budget_threshold(period, now) for period in PERIODS]
        budget_alert = next((a for a in alerts if a is not None), None)

        first = providers[0] if providers else None
        if first == "ollama":
            reason = "成本优化: 优先使用 Ollama（免费）"
        elif first == "google":
            reason = "成本优化: 优先使用 Google（低成本）"
        elif first:
            reason = f"成本优化: 使用 {first}"
        else:
            reason = "成本优化: 没有可用的Provider"

        if budget_alert:
            reason += f" ({budget_alert.period.value} 预算已使用 {budget_alert.percent_used:.1f}%)"

        return SmartRoutingDecision(providers=providers, reason=reason, budget_alert=budget_alert)
