"""
OpenRouter Provider适配器
通过单一OpenAI兼容API访问多家厂商模型
"""

from typing import Any, Optional

import httpx

from llm_gateway.types import ModelInfo, ProviderType, ValidationResult
from llm_gateway.utils.logger import get_logger

from ..base import ConnectionConfig, ModelHandle
from .openai import OpenAICompatibleAdapter

logger = get_logger(__name__)


class OpenRouterAdapter(OpenAICompatibleAdapter):
    """OpenRouter适配器"""

    provider_type = ProviderType.OPENROUTER
    default_base_url = "https://openrouter.ai/api/v1"
    supports_vision = True

    def __init__(
        self,
        *args: Any,
        app_url: str = "http://localhost:7601",
        app_title: str = "LLM Gateway",
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.app_url = app_url
        self.app_title = app_title

    def create_model(
        self,
        model_id: str,
        connection: Optional[ConnectionConfig] = None,
        default_params: Optional[dict[str, Any]] = None,
    ) -> ModelHandle:
        handle = super().create_model(model_id, connection, default_params)
        handle.headers.update({"HTTP-Referer": self.app_url, "X-Title": self.app_title})
        return handle

    async def validate(self, connection: ConnectionConfig) -> ValidationResult:
        """通过 /auth/key 无成本校验密钥"""
        if not self.resolve_api_key(connection):
            return ValidationResult(is_valid=False, error="API key is not set")

        url = f"{self.resolve_base_url(connection)}/auth/key"
        try:
            response = await self.client.get(
                url,
                headers=self.get_auth_headers(connection),
                timeout=self.validation_timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"OpenRouter 密钥校验请求失败: {e}")
            return ValidationResult(is_valid=False, error=f"network error: {e}")

        if response.is_success:
            return ValidationResult(is_valid=True)
        if response.status_code == 401:
            return ValidationResult(is_valid=False, error="Invalid API key")
        if response.status_code == 402:
            # 密钥有效但余额不足
            return ValidationResult(
                is_valid=True,
                error="API key is valid but credits are insufficient",
                details={"status_code": 402},
            )
        return ValidationResult(
            is_valid=False, error=f"Validation failed (HTTP {response.status_code})"
        )

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        """/models 为公开接口，无需认证"""
        data = await self._request_json(
            "GET",
            f"{self.resolve_base_url(connection)}/models",
            timeout=self.list_models_timeout,
        )
        models = [self.parse_model(item) for item in data.get("data", [])]
        return [m for m in models if m is not None]

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        if not model_id:
            return None

        architecture = item.get("architecture") or {}
        supports_vision = "image" in (architecture.get("input_modalities") or []) or (
            architecture.get("modality") == "multimodal"
        )
        return ModelInfo(
            model_id=model_id,
            display_name=item.get("name") or self._format_display_name(model_id),
            context_window=item.get("context_length") or 4096,
            supports_vision=supports_vision,
            supports_tools="tools" in (item.get("supported_parameters") or []),
        )

    @staticmethod
    def _format_display_name(model_id: str) -> str:
        name = model_id.split("/", 1)[-1]
        return f"{name} (via OpenRouter)"
