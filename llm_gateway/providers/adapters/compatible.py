"""
OpenAI兼容厂商适配器
DeepSeek / Mistral / xAI / 智谱 / Moonshot 均提供 OpenAI 兼容接口
"""

from typing import Any, Optional

from llm_gateway.types import ModelInfo, ProviderType

from .openai import OpenAICompatibleAdapter


class DeepSeekAdapter(OpenAICompatibleAdapter):
    """DeepSeek适配器"""

    provider_type = ProviderType.DEEPSEEK
    default_base_url = "https://api.deepseek.com/v1"

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        if not model_id:
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=model_id,
            context_window=64000,
            supports_tools=True,
        )


class MistralAdapter(OpenAICompatibleAdapter):
    """Mistral适配器"""

    provider_type = ProviderType.MISTRAL
    default_base_url = "https://api.mistral.ai/v1"

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        capabilities = item.get("capabilities") or {}
        if not model_id or capabilities.get("completion_chat") is False:
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=item.get("name") or model_id,
            context_window=item.get("max_context_length"),
            supports_vision=bool(capabilities.get("vision")),
            supports_tools=bool(capabilities.get("function_calling", True)),
        )


class XaiAdapter(OpenAICompatibleAdapter):
    """xAI (Grok) 适配器"""

    provider_type = ProviderType.XAI
    default_base_url = "https://api.x.ai/v1"
    supports_vision = True

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        if not model_id or "image" in model_id:
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=model_id,
            supports_vision="vision" in model_id or model_id.startswith("grok-4"),
            supports_tools=True,
        )


class ZhipuAdapter(OpenAICompatibleAdapter):
    """智谱 (GLM) 适配器"""

    provider_type = ProviderType.ZHIPU
    default_base_url = "https://api.z.ai/api/paas/v4"
    supports_vision = True

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        # 智谱要求 temperature 位于 (0, 1]
        normalized = super().normalize_params(params)
        if "temperature" in normalized:
            normalized["temperature"] = min(max(normalized["temperature"], 0.01), 1.0)
        return normalized

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        if not model_id:
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=model_id.upper(),
            supports_vision="4v" in model_id or model_id.endswith("v"),
            supports_tools=True,
        )


class MoonshotAdapter(OpenAICompatibleAdapter):
    """Moonshot (Kimi) 适配器"""

    provider_type = ProviderType.MOONSHOT
    default_base_url = "https://api.moonshot.ai/v1"

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id")
        if not model_id:
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=model_id,
            context_window=item.get("context_length"),
            supports_vision="vision" in model_id,
            supports_tools=True,
        )
