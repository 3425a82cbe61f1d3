"""
用量聚合服务
把原始用量记录按月汇总，并在保留期之外清理原始记录
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from llm_gateway.database import session_scope
from llm_gateway.models import UsageMonthly, UsageRecord
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)


def month_range(year: int, month: int) -> tuple[datetime, datetime]:
    """返回 [月初, 下月初)"""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def previous_month(now: datetime) -> tuple[int, int]:
    if now.month == 1:
        return now.year - 1, 12
    return now.year, now.month - 1


def _next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


class UsageAggregationService:
    """月度用量聚合服务"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def aggregate_monthly_usage(self, year: int, month: int) -> int:
        """
        汇总指定月份的用量（按 provider + 功能分组），已有汇总会被覆盖

        Returns:
            写入的汇总行数
        """
        start, end = month_range(year, month)

        stmt = (
            select(
                UsageRecord.provider,
                UsageRecord.feature_type,
                func.count(UsageRecord.id),
                func.sum(case((UsageRecord.success.is_(True), 1), else_=0)),
                func.sum(UsageRecord.input_tokens),
                func.sum(UsageRecord.output_tokens),
                func.sum(UsageRecord.cost_usd),
                func.avg(UsageRecord.response_time_ms),
            )
            .where(and_(UsageRecord.created_at >= start, UsageRecord.created_at < end))
            .group_by(UsageRecord.provider, UsageRecord.feature_type)
        )

        async with session_scope(self.session_factory) as session:
            rows = (await session.execute(stmt)).all()

            existing_result = await session.execute(
                select(UsageMonthly).where(
                    and_(UsageMonthly.year == year, UsageMonthly.month == month)
                )
            )
            existing = {(m.provider, m.feature_type): m for m in existing_result.scalars().all()}

            for provider, feature_type, total, success, input_tokens, output_tokens, cost, avg_time in rows:
                success = success or 0
                values = {
                    "total_requests": total,
                    "success_count": success,
                    "failure_count": total - success,
                    "total_input_tokens": input_tokens or 0,
                    "total_output_tokens": output_tokens or 0,
                    "total_cost_usd": round(cost or 0.0, 6),
                    "avg_response_time_ms": round(avg_time or 0.0, 2),
                }

                monthly = existing.get((provider, feature_type))
                if monthly is None:
                    session.add(
                        UsageMonthly(
                            year=year, month=month, provider=provider, feature_type=feature_type, **values
                        )
                    )
                else:
                    for key, value in values.items():
                        setattr(monthly, key, value)

        logger.info(f"月度用量汇总完成: {year}-{month:02d}，{len(rows)} 组")
        return len(rows)

    async def aggregate_previous_month(self, now: Optional[datetime] = None) -> int:
        """汇总上一个自然月"""
        year, month = previous_month(now or datetime.now())
        return await self.aggregate_monthly_usage(year, month)

    async def get_monthly_aggregations(
        self, year: int, month: Optional[int] = None
    ) -> list[dict[str, Any]]:
        """读取月度汇总，month为空时返回全年"""
        stmt = select(UsageMonthly).where(UsageMonthly.year == year)
        if month is not None:
            stmt = stmt.where(UsageMonthly.month == month)
        stmt = stmt.order_by(UsageMonthly.month, UsageMonthly.provider, UsageMonthly.feature_type)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                {
                    "year": m.year,
                    "month": m.month,
                    "provider": m.provider,
                    "feature_type": m.feature_type,
                    "total_requests": m.total_requests,
                    "success_count": m.success_count,
                    "failure_count": m.failure_count,
                    "total_input_tokens": m.total_input_tokens,
                    "total_output_tokens": m.total_output_tokens,
                    "total_cost_usd": m.total_cost_usd,
                    "avg_response_time_ms": m.avg_response_time_ms,
                }
                for m in result.scalars().all()
            ]

    async def get_monthly_total_cost(self, year: int, month: int) -> float:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(UsageMonthly.total_cost_usd), 0.0)).where(
                    and_(UsageMonthly.year == year, UsageMonthly.month == month)
                )
            )
            return round(float(result.scalar_one()), 6)

    async def get_yearly_cost_trend(self, year: int) -> list[dict[str, Any]]:
        """全年12个月的成本与请求数（没有数据的月份为0）"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    UsageMonthly.month,
                    func.sum(UsageMonthly.total_cost_usd),
                    func.sum(UsageMonthly.total_requests),
                )
                .where(UsageMonthly.year == year)
                .group_by(UsageMonthly.month)
            )
            by_month = {month: (cost, requests) for month, cost, requests in result.all()}

        trend = []
        for month in range(1, 13):
            cost, requests = by_month.get(month, (0.0, 0))
            trend.append(
                {
                    "month": month,
                    "total_cost_usd": round(cost or 0.0, 6),
                    "total_requests": requests or 0,
                }
            )
        return trend

    async def cleanup_old_usage_data(
        self, retention_days: int = 90, now: Optional[datetime] = None
    ) -> int:
        """
        清理保留期之外的原始用量记录

        只清理完全早于截止日所在月份的整月数据；每个月删除前先重新汇总。

        Returns:
            删除的原始记录数
        """
        now = now or datetime.now()
        cutoff = now - timedelta(days=retention_days)
        cutoff_month_start = cutoff.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        async with self.session_factory() as session:
            result = await session.execute(
                select(func.min(UsageRecord.created_at)).where(
                    UsageRecord.created_at < cutoff_month_start
                )
            )
            oldest = result.scalar_one()

        if oldest is None:
            return 0

        deleted = 0
        year, month = oldest.year, oldest.month
        while datetime(year, month, 1) < cutoff_month_start:
            await self.aggregate_monthly_usage(year, month)

            start, end = month_range(year, month)
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    delete(UsageRecord).where(
                        and_(UsageRecord.created_at >= start, UsageRecord.created_at < end)
                    )
                )
                deleted += result.rowcount or 0

            year, month = _next_month(year, month)

        logger.info(f"清理原始用量记录 {deleted} 条（{cutoff_month_start:%Y-%m} 之前）")
        return deleted
