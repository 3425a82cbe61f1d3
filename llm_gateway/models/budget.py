"""
BudgetConfig data model
预算配置数据模型
"""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from .base import Base, generate_id


class BudgetConfig(Base):
    """预算配置表 - 每个周期一行"""

    __tablename__ = "budget_configs"

    id = Column(String(32), primary_key=True, default=generate_id)
    period = Column(String(10), nullable=False, unique=True)  # daily, weekly, monthly
    budget_usd = Column(Float, nullable=False, default=0.0)
    alert_at_80 = Column(Boolean, nullable=False, default=True)
    alert_at_100 = Column(Boolean, nullable=False, default=True)
    last_alerted_at = Column(DateTime)
    last_alert_threshold = Column(Integer)  # 80 / 100，同周期内去重
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<BudgetConfig(period='{self.period}', budget={self.budget_usd})>"
