"""
LLM Gateway - 多Provider大模型路由网关
"""

__version__ = "0.1.0"
