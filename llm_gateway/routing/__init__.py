"""
Routing and failover
功能解析、重试分类、拒答检测与故障转移路由
"""

from .error_classifier import RETRY_RULES, RetryRule, classify_error, is_retryable_error
from .feature_resolver import FeatureResolver
from .refusal import REFUSAL_PATTERNS, is_refusal
from .router import (
    GenerateOptions,
    GenerateResult,
    Readiness,
    ReadinessStatus,
    StreamResult,
    UniversalRouter,
    VisionGenerateOptions,
)

__all__ = [
    "RETRY_RULES",
    "RetryRule",
    "classify_error",
    "is_retryable_error",
    "REFUSAL_PATTERNS",
    "is_refusal",
    "FeatureResolver",
    "UniversalRouter",
    "GenerateOptions",
    "VisionGenerateOptions",
    "GenerateResult",
    "StreamResult",
    "Readiness",
    "ReadinessStatus",
]
