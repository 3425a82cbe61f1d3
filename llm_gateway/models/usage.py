"""
Usage data model
用量记录与月度汇总数据模型
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .base import Base, generate_id


class UsageRecord(Base):
    """用量记录表 - 每次生成尝试一行（成功或失败）"""

    __tablename__ = "usage_records"

    id = Column(String(32), primary_key=True, default=generate_id)
    provider = Column(String(20), nullable=False, index=True)  # provider_type
    model_id = Column(String(200), nullable=False)
    feature_type = Column(String(50), nullable=False, index=True)
    caller_id = Column(String(100), index=True)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)
    response_time_ms = Column(Integer, nullable=False, default=0)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text)
    failover_from = Column(String(20))
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)

    def __repr__(self):
        return (
            f"<UsageRecord(provider='{self.provider}', feature='{self.feature_type}', "
            f"success={self.success})>"
        )


class UsageMonthly(Base):
    """月度汇总表 - 按 (年, 月, provider, 功能) 聚合"""

    __tablename__ = "usage_monthly"
    __table_args__ = (
        UniqueConstraint(
            "year", "month", "provider", "feature_type", name="uq_usage_monthly_key"
        ),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False)
    provider = Column(String(20), nullable=False)
    feature_type = Column(String(50), nullable=False)
    total_requests = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    total_input_tokens = Column(Integer, nullable=False, default=0)
    total_output_tokens = Column(Integer, nullable=False, default=0)
    total_cost_usd = Column(Float, nullable=False, default=0.0)
    avg_response_time_ms = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<UsageMonthly({self.year}-{self.month:02d} {self.provider}/{self.feature_type})>"
