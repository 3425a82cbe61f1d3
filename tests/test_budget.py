"""预算服务测试"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from conftest import add_record

from llm_gateway.types import BudgetInput, BudgetPeriod

NOW = datetime(2025, 3, 12, 15)


async def set_budget(budget_service, period, amount, **kwargs):
    return await budget_service.save_budget_config(BudgetInput(period=period, budget_usd=amount, **kwargs))


class TestBudgetConfig:
    """预算配置"""

    async def test_save_is_upsert(self, budget_service):
        await set_budget(budget_service, BudgetPeriod.DAILY, 5.0)
        saved = await set_budget(budget_service, BudgetPeriod.DAILY, 10.0, alert_at_80=False)

        assert saved.budget_usd == 10.0
        assert saved.alert_at_80 is False
        configs = await budget_service.get_all_budget_configs()
        assert len(configs) == 1

    async def test_configs_are_ordered_by_period(self, budget_service):
        await set_budget(budget_service, BudgetPeriod.MONTHLY, 100.0)
        await set_budget(budget_service, BudgetPeriod.DAILY, 5.0)

        periods = [c.period for c in await budget_service.get_all_budget_configs()]

        assert periods == [BudgetPeriod.DAILY, BudgetPeriod.MONTHLY]

    async def test_missing_config(self, budget_service):
        assert await budget_service.get_budget_config("weekly") is None


class TestThresholds:
    """阈值告警"""

    async def test_no_budget_no_alert(self, budget_service, session_factory):
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=100.0)
        assert await budget_service.check_budget_threshold("daily", NOW) is None

        await set_budget(budget_service, BudgetPeriod.DAILY, 0.0)
        assert await budget_service.check_budget_threshold("daily", NOW) is None

    async def test_below_80_percent(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=7.9)

        assert await budget_service.check_budget_threshold("daily", NOW) is None

    async def test_alerts_are_monotonic(self, budget_service, session_factory):
        """80%只告警一次，100%告警后不再出现80%告警"""
        await set_budget(budget_service, BudgetPeriod.DAILY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=8.5)

        first = await budget_service.check_budget_threshold("daily", NOW)
        assert first.threshold == 80
        assert first.percent_used == pytest.approx(85.0)
        assert await budget_service.check_budget_threshold("daily", NOW) is None

        await add_record(session_factory, datetime(2025, 3, 12, 10), cost_usd=2.0)
        second = await budget_service.check_budget_threshold("daily", NOW)
        assert second.threshold == 100
        assert second.to_dict()["percent_used"] == 105.0
        assert await budget_service.check_budget_threshold("daily", NOW) is None

        config = await budget_service.get_budget_config("daily")
        assert config.last_alert_threshold == 100
        assert config.last_alerted_at is not None

    async def test_jump_straight_to_100(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.MONTHLY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 2), cost_usd=12.0)

        alert = await budget_service.check_budget_threshold("monthly", NOW)

        assert alert.threshold == 100
        assert await budget_service.check_budget_threshold("monthly", NOW) is None

    async def test_disabled_alert_flags(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 10.0, alert_at_80=False, alert_at_100=False)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=20.0)

        assert await budget_service.check_budget_threshold("daily", NOW) is None

    async def test_reset_allows_new_alerts(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=9.0)
        assert (await budget_service.check_budget_threshold("daily", NOW)).threshold == 80

        await budget_service.reset_budget_alert_status("daily")

        config = await budget_service.get_budget_config("daily")
        assert config.last_alert_threshold is None
        assert config.last_alerted_at is None
        assert (await budget_service.check_budget_threshold("daily", NOW)).threshold == 80

    async def test_check_all(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 1.0)
        await set_budget(budget_service, BudgetPeriod.WEEKLY, 100.0)
        await set_budget(budget_service, BudgetPeriod.MONTHLY, 2.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=1.8)

        alerts = await budget_service.check_all_budget_thresholds(NOW)

        assert [(a.period, a.threshold) for a in alerts] == [
            (BudgetPeriod.DAILY, 100),
            (BudgetPeriod.MONTHLY, 80),
        ]

    async def test_new_period_ignores_previous_alert(self, budget_service, session_factory):
        """前一天的100%告警不影响第二天的告警（未经过周期切换任务）"""
        await set_budget(budget_service, BudgetPeriod.DAILY, 1.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=2.0)
        assert (await budget_service.check_budget_threshold("daily", NOW)).threshold == 100

        next_day = datetime(2025, 3, 13, 10)
        await add_record(session_factory, datetime(2025, 3, 13, 9), cost_usd=2.0)

        alert = await budget_service.check_budget_threshold("daily", next_day)

        assert alert.threshold == 100
        assert alert.current_cost == pytest.approx(2.0)
        assert await budget_service.check_budget_threshold("daily", next_day) is None
        config = await budget_service.get_budget_config("daily")
        assert config.last_alerted_at == next_day

    async def test_new_week_allows_80_after_100(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.WEEKLY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=12.0)
        assert (await budget_service.check_budget_threshold("weekly", NOW)).threshold == 100

        # 默认每周从周日开始，2025-03-16 是周日
        await add_record(session_factory, datetime(2025, 3, 16, 9), cost_usd=8.5)
        alert = await budget_service.check_budget_threshold("weekly", datetime(2025, 3, 16, 12))

        assert alert.threshold == 80


class TestSummaryAndRouting:
    """预算汇总与成本路由"""

    async def test_summary(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=4.0)

        summary = {s["period"]: s for s in await budget_service.get_budget_summary(NOW)}

        assert summary["daily"]["percent_used"] == pytest.approx(40.0)
        assert summary["daily"]["remaining"] == 6.0
        assert summary["daily"]["is_over_budget"] is False
        assert summary["weekly"]["budget"] == 0.0
        assert summary["weekly"]["current_cost"] == 4.0
        assert summary["weekly"]["is_over_budget"] is False

    async def test_filter_requires_all_periods_over_budget(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.DAILY, 1.0)
        await set_budget(budget_service, BudgetPeriod.WEEKLY, 1.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=5.0)

        providers = ["openai", "ollama"]
        assert await budget_service.filter_by_budget(providers, NOW) == providers

        await set_budget(budget_service, BudgetPeriod.MONTHLY, 1.0)
        assert await budget_service.filter_by_budget(providers, NOW) == ["ollama"]

    async def test_filter_without_free_providers_is_unchanged(self, budget_service, session_factory):
        for period in BudgetPeriod:
            await set_budget(budget_service, period, 1.0)
        await add_record(session_factory, datetime(2025, 3, 12, 9), cost_usd=5.0)

        assert await budget_service.filter_by_budget(["openai", "google"], NOW) == ["openai", "google"]

    async def test_smart_routing_prefers_cheapest(self, budget_service):
        decision = await budget_service.get_smart_routing_decision(["openai", "ollama", "google"], "general_chat", NOW)

        assert decision.providers == ["ollama", "google", "openai"]
        assert "Ollama" in decision.reason
        assert decision.budget_alert is None

    async def test_smart_routing_vision_feature(self, budget_service):
        decision = await budget_service.get_smart_routing_decision(["openai", "ollama", "deepseek"], "face_analysis", NOW)

        assert decision.providers == ["openai"]
        assert "openai" in decision.reason

    async def test_smart_routing_reports_shortest_period_alert(self, budget_service, session_factory):
        await set_budget(budget_service, BudgetPeriod.WEEKLY, 10.0)
        await set_budget(budget_service, BudgetPeriod.MONTHLY, 10.0)
        await add_record(session_factory, datetime(2025, 3, 11, 9), cost_usd=9.0)

        decision = await budget_service.get_smart_routing_decision(["google"], "general_chat", NOW)

        assert decision.budget_alert.period == BudgetPeriod.WEEKLY
        assert "Google" in decision.reason
        assert "weekly" in decision.reason
        # 每个周期都会检查并记录告警状态
        monthly = await budget_service.get_budget_config("monthly")
        assert monthly.last_alert_threshold == 80

    async def test_smart_routing_without_providers(self, budget_service):
        decision = await budget_service.get_smart_routing_decision([], "general_chat", NOW)

        assert decision.providers == []
        assert "没有可用" in decision.reason
