"""
Provider adapters for different AI service providers
各种AI服务提供商的适配器实现
"""

from .anthropic import AnthropicAdapter
from .cohere import CohereAdapter
from .compatible import (
    DeepSeekAdapter,
    MistralAdapter,
    MoonshotAdapter,
    XaiAdapter,
    ZhipuAdapter,
)
from .google import GoogleAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter, OpenAICompatibleAdapter
from .openrouter import OpenRouterAdapter

__all__ = [
    "OpenAICompatibleAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "GoogleAdapter",
    "OllamaAdapter",
    "DeepSeekAdapter",
    "MistralAdapter",
    "CohereAdapter",
    "XaiAdapter",
    "ZhipuAdapter",
    "MoonshotAdapter",
    "OpenRouterAdapter",
]
