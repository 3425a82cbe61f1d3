"""
Database models
数据库模型
"""

from .base import Base
from .budget import BudgetConfig
from .feature_mapping import FeatureMapping
from .provider import Model, Provider
from .usage import UsageMonthly, UsageRecord

__all__ = [
    "Base",
    "Provider",
    "Model",
    "FeatureMapping",
    "UsageRecord",
    "UsageMonthly",
    "BudgetConfig",
]
