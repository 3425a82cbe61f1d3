"""
Base model configuration
基础模型配置
"""

import uuid

from sqlalchemy.orm import declarative_base

# 创建基础模型类
Base = declarative_base()


def generate_id() -> str:
    """生成主键ID"""
    return uuid.uuid4().hex
