"""
统一异常处理模块
"""

from .base_exceptions import (
    AdapterNotFoundException,
    BaseGatewayException,
    ConfigurationException,
    EncryptionException,
    FailoverError,
    ModelNotFoundException,
    ProviderAttemptError,
    ProviderNotFoundException,
)
from .error_codes import ERROR_MESSAGES, ErrorCode, get_error_message

__all__ = [
    "ErrorCode",
    "ERROR_MESSAGES",
    "get_error_message",
    "BaseGatewayException",
    "ConfigurationException",
    "EncryptionException",
    "ProviderNotFoundException",
    "ModelNotFoundException",
    "AdapterNotFoundException",
    "ProviderAttemptError",
    "FailoverError",
]
