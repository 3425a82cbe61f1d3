"""
用量追踪服务
记录每次生成尝试（成功或失败），并按周期统计成本与用量
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from llm_gateway.database import session_scope
from llm_gateway.exceptions import BaseGatewayException, ErrorCode
from llm_gateway.models import UsageRecord
from llm_gateway.types import BudgetPeriod, ProviderType, TokenUsage
from llm_gateway.utils.cost_model import calculate_cost
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)

# Python weekday: 周一=0 ... 周日=6
SUNDAY = 6


def period_start(
    period: Union[BudgetPeriod, str], now: Optional[datetime] = None, week_start_day: int = SUNDAY
) -> datetime:
    """
    计算周期起点（本地时间）

    Args:
        period: daily / weekly / monthly
        now: 当前时间，默认 datetime.now()
        week_start_day: 每周起始日（Python weekday），默认周日

    Returns:
        周期起点
    """
    now = now or datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        period = BudgetPeriod(period)
    except ValueError:
        raise BaseGatewayException(
            ErrorCode.BUDGET_INVALID_PERIOD, f"Invalid budget period: {period}"
        ) from None

    if period == BudgetPeriod.DAILY:
        return midnight
    if period == BudgetPeriod.WEEKLY:
        days_back = (midnight.weekday() - week_start_day) % 7
        return midnight - timedelta(days=days_back)
    return midnight.replace(day=1)


@dataclass
class UsageStats:
    """用量统计结果"""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 1.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    avg_response_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cost_usd": self.total_cost_usd,
            "avg_response_time_ms": self.avg_response_time_ms,
        }


def _provider_key(provider: Union[ProviderType, str]) -> str:
    return provider.value if isinstance(provider, ProviderType) else provider


class UsageTracker:
    """用量追踪服务"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], week_start_day: int = SUNDAY):
        self.session_factory = session_factory
        self.week_start_day = week_start_day

    async def track_usage(
        self,
        provider: Union[ProviderType, str],
        model_id: str,
        feature_type: str,
        usage: TokenUsage,
        response_time_ms: int,
        caller_id: Optional[str] = None,
        failover_from: Optional[str] = None,
    ) -> float:
        """
        记录一次成功调用

        Returns:
            本次调用成本（美元）
        """
        provider = _provider_key(provider)
        cost = calculate_cost(provider, usage.input_tokens, usage.output_tokens)

        async with session_scope(self.session_factory) as session:
            session.add(
                UsageRecord(
                    provider=provider,
                    model_id=model_id,
                    feature_type=feature_type,
                    caller_id=caller_id,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost_usd=cost,
                    response_time_ms=response_time_ms,
                    success=True,
                    failover_from=failover_from,
                )
            )

        logger.debug(
            f"用量记录: {provider}/{model_id} feature={feature_type} "
            f"tokens={usage.total_tokens} cost=${cost:.6f}"
        )
        return cost

    async def track_failure(
        self,
        provider: Union[ProviderType, str],
        model_id: str,
        feature_type: str,
        error_message: str,
        response_time_ms: int = 0,
        caller_id: Optional[str] = None,
        failover_from: Optional[str] = None,
    ) -> None:
        """记录一次失败调用（成本为0）"""
        provider = _provider_key(provider)

        async with session_scope(self.session_factory) as session:
            session.add(
                UsageRecord(
                    provider=provider,
                    model_id=model_id,
                    feature_type=feature_type,
                    caller_id=caller_id,
                    input_tokens=0,
                    output_tokens=0,
                    cost_usd=0.0,
                    response_time_ms=response_time_ms,
                    success=False,
                    error_message=error_message,
                    failover_from=failover_from,
                )
            )

        logger.debug(f"失败记录: {provider}/{model_id} feature={feature_type}: {error_message}")

    async def get_usage_stats(
        self,
        start: datetime,
        end: Optional[datetime] = None,
        provider: Optional[str] = None,
        feature_type: Optional[str] = None,
        caller_id: Optional[str] = None,
    ) -> UsageStats:
        """
        统计时间范围内的用量

        Args:
            start: 起始时间（含）
            end: 结束时间（不含），默认不限
            provider / feature_type / caller_id: 可选过滤条件

        Returns:
            UsageStats，没有请求时 success_rate 为 1
        """
        stmt = select(
            func.count(UsageRecord.id),
            func.sum(case((UsageRecord.success.is_(True), 1), else_=0)),
            func.sum(UsageRecord.input_tokens),
            func.sum(UsageRecord.output_tokens),
            func.sum(UsageRecord.cost_usd),
            func.avg(UsageRecord.response_time_ms),
        ).where(UsageRecord.created_at >= start)

        if end is not None:
            stmt = stmt.where(UsageRecord.created_at < end)
        if provider:
            stmt = stmt.where(UsageRecord.provider == provider)
        if feature_type:
            stmt = stmt.where(UsageRecord.feature_type == feature_type)
        if caller_id:
            stmt = stmt.where(UsageRecord.caller_id == caller_id)

        async with self.session_factory() as session:
            row = (await session.execute(stmt)).one()

        total, success, input_tokens, output_tokens, cost, avg_time = row
        total = total or 0
        success = success or 0
        return UsageStats(
            total_requests=total,
            success_count=success,
            failure_count=total - success,
            success_rate=(success / total) if total else 1.0,
            total_input_tokens=input_tokens or 0,
            total_output_tokens=output_tokens or 0,
            total_cost_usd=round(cost or 0.0, 6),
            avg_response_time_ms=round(avg_time or 0.0, 2),
        )

    async def get_usage_by_provider(
        self, start: datetime, end: Optional[datetime] = None
    ) -> dict[str, UsageStats]:
        """按Provider分组统计"""
        return await self._grouped_stats(UsageRecord.provider, start, end)

    async def get_usage_by_feature(
        self, start: datetime, end: Optional[datetime] = None
    ) -> dict[str, UsageStats]:
        """按功能类型分组统计"""
        return await self._grouped_stats(UsageRecord.feature_type, start, end)

    async def get_current_period_cost(
        self, period: Union[BudgetPeriod, str], now: Optional[datetime] = None
    ) -> float:
        """当前周期（日/周/月）内的累计成本"""
        start = period_start(period, now, self.week_start_day)

        async with self.session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(UsageRecord.cost_usd), 0.0)).where(
                    UsageRecord.created_at >= start
                )
            )
            return round(float(result.scalar_one()), 6)

    async def _grouped_stats(
        self, column: Any, start: datetime, end: Optional[datetime]
    ) -> dict[str, UsageStats]:
        stmt = (
            select(
                column,
                func.count(UsageRecord.id),
                func.sum(case((UsageRecord.success.is_(True), 1), else_=0)),
                func.sum(UsageRecord.input_tokens),
                func.sum(UsageRecord.output_tokens),
                func.sum(UsageRecord.cost_usd),
                func.avg(UsageRecord.response_time_ms),
            )
            .where(UsageRecord.created_at >= start)
            .group_by(column)
        )
        if end is not None:
            stmt = stmt.where(UsageRecord.created_at < end)

        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        stats = {}
        for key, total, success, input_tokens, output_tokens, cost, avg_time in rows:
            success = success or 0
            stats[key] = UsageStats(
                total_requests=total,
                success_count=success,
                failure_count=total - success,
                success_rate=(success / total) if total else 1.0,
                total_input_tokens=input_tokens or 0,
                total_output_tokens=output_tokens or 0,
                total_cost_usd=round(cost or 0.0, 6),
                avg_response_time_ms=round(avg_time or 0.0, 2),
            )
        return stats
