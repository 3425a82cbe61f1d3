"""
统一异常基类
定义所有网关异常的基础结构
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from llm_gateway.config_models import DEFAULT_USER_ERROR_MESSAGE

from .error_codes import ErrorCode, get_error_message


class BaseGatewayException(Exception):
    """网关基础异常类"""

    def __init__(
        self,
        error_code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message or get_error_message(error_code)
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()
        self.traceback_str = traceback.format_exc() if cause else None

        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """转换为字典格式"""
        return {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(error_code={self.error_code.value}, message='{self.message}')"


class ConfigurationException(BaseGatewayException):
    """配置相关异常"""

    def __init__(
        self,
        error_code: ErrorCode,
        message: Optional[str] = None,
        config_path: Optional[str] = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", None) or {}
        if config_path:
            details["config_path"] = config_path

        super().__init__(error_code, message, details, **kwargs)


class EncryptionException(BaseGatewayException):
    """API密钥加解密异常"""

    pass


class ProviderNotFoundException(BaseGatewayException):
    """Provider不存在"""

    def __init__(self, provider_id: str, **kwargs: Any):
        super().__init__(
            ErrorCode.PROVIDER_NOT_FOUND,
            f"Provider not found: {provider_id}",
            details={"provider_id": provider_id},
            **kwargs,
        )


class ModelNotFoundException(BaseGatewayException):
    """模型不存在"""

    def __init__(self, model_id: str, **kwargs: Any):
        super().__init__(
            ErrorCode.MODEL_NOT_FOUND,
            f"Model not found: {model_id}",
            details={"model_id": model_id},
            **kwargs,
        )


class AdapterNotFoundException(BaseGatewayException):
    """找不到Provider类型对应的适配器"""

    def __init__(self, provider_type: str, **kwargs: Any):
        super().__init__(
            ErrorCode.ADAPTER_NOT_FOUND,
            f"No adapter registered for provider type: {provider_type}",
            details={"provider_type": provider_type},
            **kwargs,
        )


@dataclass
class ProviderAttemptError:
    """单个候选Provider的失败记录"""

    provider: str
    error: str
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: int = 0
    model: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }


class FailoverError(BaseGatewayException):
    """所有候选Provider都失败（或没有可用候选）时抛出的聚合异常"""

    def __init__(
        self,
        feature_type: str,
        errors: list[ProviderAttemptError],
        user_message: str = DEFAULT_USER_ERROR_MESSAGE,
    ):
        self.feature_type = feature_type
        self.errors = list(errors)
        self.user_message = user_message

        if self.errors:
            summary = "; ".join(f"{e.provider}: {e.error}" for e in self.errors)
            message = (
                f'All {len(self.errors)} providers failed for feature "{feature_type}". '
                f"Errors: {summary}"
            )
            error_code = ErrorCode.ALL_PROVIDERS_FAILED
        else:
            message = f'No providers available for feature "{feature_type}"'
            error_code = ErrorCode.NO_AVAILABLE_PROVIDERS

        super().__init__(
            error_code,
            message,
            details={
                "feature_type": feature_type,
                "total_attempts": len(self.errors),
                "errors": [e.to_dict() for e in self.errors],
            },
        )

    @property
    def total_attempts(self) -> int:
        return len(self.errors)

    @property
    def last_error(self) -> Optional[ProviderAttemptError]:
        return self.errors[-1] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["user_message"] = self.user_message
        return data
