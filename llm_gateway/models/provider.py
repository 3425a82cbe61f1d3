"""
Provider / Model data model
Provider与模型数据模型
"""

import time

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base, generate_id


class Provider(Base):
    """Provider表 - 已配置的AI服务提供商连接"""

    __tablename__ = "providers"

    id = Column(String(32), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False)
    provider_type = Column(String(20), nullable=False, index=True)  # anthropic, openai ...
    base_url = Column(String(500))
    api_key_encrypted = Column(Text)  # ivHex:authTagHex:ciphertextHex
    auth_type = Column(String(20), nullable=False, default="bearer")
    custom_auth_header = Column(String(100))
    capabilities = Column(JSON, nullable=False, default=list)
    cost_tier = Column(String(10), nullable=False, default="medium")
    quality_tier = Column(String(10), nullable=False, default="balanced")

    # 状态
    is_enabled = Column(Boolean, nullable=False, default=False, index=True)
    is_validated = Column(Boolean, nullable=False, default=False)
    validated_at = Column(DateTime)
    created_seq = Column(BigInteger, nullable=False, default=time.time_ns, index=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # 关系
    models = relationship(
        "Model",
        back_populates="provider",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Model.created_seq",
    )

    def __repr__(self):
        return f"<Provider(name='{self.name}', type='{self.provider_type}')>"


class Model(Base):
    """Model表 - Provider下可用的模型"""

    __tablename__ = "models"

    id = Column(String(32), primary_key=True, default=generate_id)
    provider_id = Column(
        String(32), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    model_id = Column(String(200), nullable=False)
    display_name = Column(String(200), nullable=False)
    context_window = Column(Integer)  # 为空表示未知
    supports_vision = Column(Boolean, nullable=False, default=False)
    supports_tools = Column(Boolean, nullable=False, default=False)
    default_params = Column(JSON)
    is_default = Column(Boolean, nullable=False, default=False)

    # 插入顺序，保证候选排序稳定
    created_seq = Column(BigInteger, nullable=False, default=time.time_ns, index=True)
    created_at = Column(DateTime, default=func.now())

    provider = relationship("Provider", back_populates="models")

    def __repr__(self):
        return f"<Model(model_id='{self.model_id}', provider_id='{self.provider_id}')>"
