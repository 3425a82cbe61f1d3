"""
Gateway services
Provider注册、用量追踪、月度聚合与预算服务
"""

from .budget_service import BudgetAlert, BudgetService, SmartRoutingDecision
from .provider_registry import ProviderRegistry
from .usage_aggregation import UsageAggregationService
from .usage_tracker import UsageStats, UsageTracker, period_start

__all__ = [
    "ProviderRegistry",
    "UsageTracker",
    "UsageStats",
    "period_start",
    "UsageAggregationService",
    "BudgetService",
    "BudgetAlert",
    "SmartRoutingDecision",
]
