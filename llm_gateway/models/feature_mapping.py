"""
FeatureMapping data model
功能路由规则数据模型
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base, generate_id


class FeatureMapping(Base):
    """功能映射表 - 将逻辑功能绑定到模型选择策略"""

    __tablename__ = "feature_mappings"
    __table_args__ = (
        UniqueConstraint("feature_type", "priority", name="uq_feature_priority"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    feature_type = Column(String(50), nullable=False, index=True)
    match_mode = Column(String(20), nullable=False)  # auto_tag, specific_model
    required_tags = Column(JSON, nullable=False, default=list)
    excluded_tags = Column(JSON, nullable=False, default=list)
    specific_model_id = Column(String(32), ForeignKey("models.id", ondelete="SET NULL"))
    priority = Column(Integer, nullable=False, default=1)
    fallback_mode = Column(String(20), nullable=False, default="next_priority")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    specific_model = relationship("Model")

    def __repr__(self):
        return f"<FeatureMapping(feature='{self.feature_type}', priority={self.priority})>"
