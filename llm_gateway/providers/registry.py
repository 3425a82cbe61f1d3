"""
Provider适配器注册中心
按Provider类型查表创建适配器实例
"""

from typing import Callable, Optional, Union

import httpx

from llm_gateway.exceptions import AdapterNotFoundException
from llm_gateway.types import ProviderType
from llm_gateway.utils.logger import get_logger

from .adapters import (
    AnthropicAdapter,
    CohereAdapter,
    DeepSeekAdapter,
    GoogleAdapter,
    MistralAdapter,
    MoonshotAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
    XaiAdapter,
    ZhipuAdapter,
)
from .base import BaseAdapter

logger = get_logger(__name__)

AdapterConstructor = Callable[..., BaseAdapter]

BUILTIN_ADAPTERS: dict[ProviderType, type[BaseAdapter]] = {
    ProviderType.OPENAI: OpenAIAdapter,
    ProviderType.ANTHROPIC: AnthropicAdapter,
    ProviderType.GOOGLE: GoogleAdapter,
    ProviderType.OLLAMA: OllamaAdapter,
    ProviderType.DEEPSEEK: DeepSeekAdapter,
    ProviderType.MISTRAL: MistralAdapter,
    ProviderType.COHERE: CohereAdapter,
    ProviderType.XAI: XaiAdapter,
    ProviderType.ZHIPU: ZhipuAdapter,
    ProviderType.MOONSHOT: MoonshotAdapter,
    ProviderType.OPENROUTER: OpenRouterAdapter,
}


class AdapterFactory:
    """Provider适配器查找表，每种类型缓存一个实例"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        validation_timeout: float = 10.0,
        list_models_timeout: float = 15.0,
    ):
        self._client = client
        self._timeouts = {
            "timeout": timeout,
            "validation_timeout": validation_timeout,
            "list_models_timeout": list_models_timeout,
        }
        self._constructors: dict[ProviderType, AdapterConstructor] = dict(BUILTIN_ADAPTERS)
        self._instances: dict[ProviderType, BaseAdapter] = {}

    def register_adapter(
        self,
        provider_type: Union[ProviderType, str],
        constructor: Union[AdapterConstructor, BaseAdapter],
    ) -> None:
        """
        注册（或覆盖）适配器

        Args:
            provider_type: Provider类型
            constructor: 适配器类/工厂函数，或现成的适配器实例
        """
        provider_type = ProviderType(provider_type)
        self._instances.pop(provider_type, None)

        if isinstance(constructor, BaseAdapter):
            self._instances[provider_type] = constructor
            self._constructors[provider_type] = lambda **_: constructor
        else:
            self._constructors[provider_type] = constructor

        logger.info(f"注册适配器: {provider_type.value}")

    def has_adapter(self, provider_type: Union[ProviderType, str]) -> bool:
        return ProviderType(provider_type) in self._constructors

    def get_adapter(self, provider_type: Union[ProviderType, str]) -> BaseAdapter:
        """
        获取适配器实例

        Raises:
            AdapterNotFoundException: 该类型没有注册适配器（如 custom）
        """
        provider_type = ProviderType(provider_type)
        instance = self._instances.get(provider_type)
        if instance is not None:
            return instance

        constructor = self._constructors.get(provider_type)
        if constructor is None:
            raise AdapterNotFoundException(provider_type.value)

        instance = constructor(client=self._client, **self._timeouts)
        self._instances[provider_type] = instance
        return instance

    def supported_types(self) -> list[ProviderType]:
        return list(self._constructors)

    async def close(self) -> None:
        """关闭所有适配器的HTTP客户端"""
        for adapter in self._instances.values():
            await adapter.close()
        if self._client is not None:
            await self._client.aclose()
