"""用量追踪测试"""

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import select

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from conftest import add_record

from llm_gateway.exceptions import BaseGatewayException, ErrorCode
from llm_gateway.models import UsageRecord
from llm_gateway.services import UsageTracker, period_start
from llm_gateway.types import BudgetPeriod, ProviderType, TokenUsage


class TestPeriodStart:
    """周期起点计算"""

    # 2025-03-12 是周三
    NOW = datetime(2025, 3, 12, 15, 30, 45)

    def test_daily(self):
        assert period_start("daily", self.NOW) == datetime(2025, 3, 12)

    def test_weekly_starts_on_sunday(self):
        assert period_start(BudgetPeriod.WEEKLY, self.NOW) == datetime(2025, 3, 9)

    def test_weekly_on_sunday_is_same_day(self):
        assert period_start("weekly", datetime(2025, 3, 9, 8)) == datetime(2025, 3, 9)

    def test_weekly_with_monday_start(self):
        assert period_start("weekly", self.NOW, week_start_day=0) == datetime(2025, 3, 10)

    def test_weekly_crosses_month(self):
        assert period_start("weekly", datetime(2025, 3, 1, 10)) == datetime(2025, 2, 23)

    def test_monthly(self):
        assert period_start("monthly", self.NOW) == datetime(2025, 3, 1)

    def test_invalid_period(self):
        with pytest.raises(BaseGatewayException) as exc_info:
            period_start("yearly", self.NOW)
        assert exc_info.value.error_code == ErrorCode.BUDGET_INVALID_PERIOD


class TestTracking:
    """记录成功与失败"""

    async def test_track_usage_computes_cost(self, usage_tracker, session_factory):
        cost = await usage_tracker.track_usage(
            ProviderType.ANTHROPIC,
            "claude-sonnet-4-5",
            "report_generate",
            TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000),
            1500,
            caller_id="tenant-1",
        )

        assert cost == 18.0
        async with session_factory() as session:
            record = (await session.execute(select(UsageRecord))).scalar_one()
        assert record.provider == "anthropic"
        assert record.cost_usd == 18.0
        assert record.success is True
        assert record.caller_id == "tenant-1"
        assert record.created_at is not None

    async def test_unknown_provider_costs_nothing(self, usage_tracker):
        cost = await usage_tracker.track_usage("custom", "local-model", "general_chat", TokenUsage(500, 500), 10)
        assert cost == 0.0

    async def test_track_failure(self, usage_tracker, session_factory):
        await usage_tracker.track_failure(
            "openai", "gpt-4o", "general_chat", "HTTP 503", 200, failover_from="anthropic"
        )

        async with session_factory() as session:
            record = (await session.execute(select(UsageRecord))).scalar_one()
        assert record.success is False
        assert record.cost_usd == 0.0
        assert record.input_tokens == 0
        assert record.error_message == "HTTP 503"
        assert record.failover_from == "anthropic"


class TestStats:
    """统计查询"""

    async def test_empty_range_has_full_success_rate(self, usage_tracker):
        stats = await usage_tracker.get_usage_stats(datetime(2025, 1, 1))

        assert stats.total_requests == 0
        assert stats.success_rate == 1.0
        assert stats.total_cost_usd == 0.0

    async def test_stats_with_filters(self, usage_tracker, session_factory):
        day = datetime(2025, 3, 12, 10)
        await add_record(session_factory, day, cost_usd=0.5, input_tokens=10, output_tokens=20)
        await add_record(session_factory, day, success=False, error_message="boom", response_time_ms=300)
        await add_record(session_factory, day, provider="google", cost_usd=0.25, caller_id="tenant-2")
        await add_record(session_factory, datetime(2025, 2, 1), cost_usd=9.0)

        stats = await usage_tracker.get_usage_stats(datetime(2025, 3, 1), datetime(2025, 4, 1))
        assert stats.total_requests == 3
        assert stats.success_count == 2
        assert stats.failure_count == 1
        assert stats.success_rate == pytest.approx(2 / 3)
        assert stats.total_cost_usd == 0.75

        openai = await usage_tracker.get_usage_stats(datetime(2025, 3, 1), provider="openai")
        assert openai.total_requests == 2
        assert openai.total_input_tokens == 10
        assert openai.avg_response_time_ms == 200.0

        tenant = await usage_tracker.get_usage_stats(datetime(2025, 1, 1), caller_id="tenant-2")
        assert tenant.total_requests == 1

    async def test_grouped_stats(self, usage_tracker, session_factory):
        day = datetime(2025, 3, 12, 10)
        await add_record(session_factory, day, cost_usd=1.0)
        await add_record(session_factory, day, provider="google", feature_type="face_analysis", cost_usd=2.0)
        await add_record(session_factory, day, provider="google", feature_type="general_chat", cost_usd=3.0)

        by_provider = await usage_tracker.get_usage_by_provider(datetime(2025, 3, 1))
        by_feature = await usage_tracker.get_usage_by_feature(datetime(2025, 3, 1))

        assert by_provider["openai"].total_cost_usd == 1.0
        assert by_provider["google"].total_requests == 2
        assert by_feature["general_chat"].total_cost_usd == 4.0
        assert by_feature["face_analysis"].to_dict()["total_requests"] == 1

    async def test_current_period_cost(self, session_factory):
        tracker = UsageTracker(session_factory)
        now = datetime(2025, 3, 12, 15)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=1.0)
        await add_record(session_factory, datetime(2025, 3, 10, 9), cost_usd=2.0)
        await add_record(session_factory, datetime(2025, 3, 2, 9), cost_usd=4.0)
        await add_record(session_factory, datetime(2025, 2, 27, 9), cost_usd=8.0)

        assert await tracker.get_current_period_cost("daily", now) == 1.0
        assert await tracker.get_current_period_cost("weekly", now) == 3.0
        assert await tracker.get_current_period_cost("monthly", now) == 7.0
