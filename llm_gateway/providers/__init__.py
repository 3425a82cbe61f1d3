"""
Provider adapters module
Provider适配器模块
"""

from .base import (
    BaseAdapter,
    ConnectionConfig,
    GenerateRequest,
    GenerateResponse,
    ModelHandle,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderServerError,
    StreamResponse,
)
from .registry import AdapterFactory

__all__ = [
    "BaseAdapter",
    "ConnectionConfig",
    "ModelHandle",
    "GenerateRequest",
    "GenerateResponse",
    "StreamResponse",
    "ProviderError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderRequestError",
    "ProviderServerError",
    "ProviderNetworkError",
    "AdapterFactory",
]
