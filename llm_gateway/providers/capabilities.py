"""
Provider能力与标签注册表
每种Provider类型的静态元数据与默认模型模板
"""

from dataclasses import dataclass
from typing import Any

from llm_gateway.types import CostTier, ProviderType, QualityTier


@dataclass(frozen=True)
class ProviderStaticConfig:
    """Provider类型的静态元数据"""

    display_name: str
    default_base_url: str
    requires_api_key: bool
    supports_vision: bool
    cost_tier: CostTier
    quality_tier: QualityTier


PROVIDER_STATIC_CONFIGS: dict[ProviderType, ProviderStaticConfig] = {
    ProviderType.ANTHROPIC: ProviderStaticConfig(
        "Anthropic", "https://api.anthropic.com/v1", True, True, CostTier.HIGH, QualityTier.PREMIUM
    ),
    ProviderType.OPENAI: ProviderStaticConfig(
        "OpenAI", "https://api.openai.com/v1", True, True, CostTier.MEDIUM, QualityTier.PREMIUM
    ),
    ProviderType.GOOGLE: ProviderStaticConfig(
        "Google Gemini",
        "https://generativelanguage.googleapis.com/v1beta",
        True,
        True,
        CostTier.LOW,
        QualityTier.BALANCED,
    ),
    ProviderType.OLLAMA: ProviderStaticConfig(
        "Ollama", "http://localhost:11434/api", False, False, CostTier.FREE, QualityTier.FAST
    ),
    ProviderType.DEEPSEEK: ProviderStaticConfig(
        "DeepSeek", "https://api.deepseek.com/v1", True, False, CostTier.LOW, QualityTier.BALANCED
    ),
    ProviderType.MISTRAL: ProviderStaticConfig(
        "Mistral", "https://api.mistral.ai/v1", True, False, CostTier.MEDIUM, QualityTier.BALANCED
    ),
    ProviderType.COHERE: ProviderStaticConfig(
        "Cohere", "https://api.cohere.com/v1", True, False, CostTier.MEDIUM, QualityTier.BALANCED
    ),
    ProviderType.XAI: ProviderStaticConfig(
        "xAI", "https://api.x.ai/v1", True, True, CostTier.HIGH, QualityTier.PREMIUM
    ),
    ProviderType.ZHIPU: ProviderStaticConfig(
        "Zhipu AI", "https://api.z.ai/api/paas/v4", True, True, CostTier.LOW, QualityTier.BALANCED
    ),
    ProviderType.MOONSHOT: ProviderStaticConfig(
        "Moonshot", "https://api.moonshot.ai/v1", True, False, CostTier.LOW, QualityTier.BALANCED
    ),
    ProviderType.OPENROUTER: ProviderStaticConfig(
        "OpenRouter", "https://openrouter.ai/api/v1", True, True, CostTier.MEDIUM, QualityTier.BALANCED
    ),
    ProviderType.CUSTOM: ProviderStaticConfig(
        "Custom", "", True, False, CostTier.MEDIUM, QualityTier.BALANCED
    ),
}


def _m(
    model_id: str,
    display_name: str,
    context_window: int,
    vision: bool,
    tools: bool,
    is_default: bool = False,
) -> dict[str, Any]:
    return {
        "model_id": model_id,
        "display_name": display_name,
        "context_window": context_window,
        "supports_vision": vision,
        "supports_tools": tools,
        "is_default": is_default,
    }


# 注册Provider时写入的默认模型
DEFAULT_MODELS: dict[ProviderType, list[dict[str, Any]]] = {
    ProviderType.OPENAI: [
        _m("gpt-4o", "GPT-4o", 128000, True, True, True),
        _m("gpt-4o-mini", "GPT-4o Mini", 128000, True, True),
    ],
    ProviderType.ANTHROPIC: [
        _m("claude-sonnet-4-5", "Claude Sonnet 4.5", 200000, True, True, True),
        _m("claude-3-5-haiku-latest", "Claude 3.5 Haiku", 200000, True, True),
    ],
    ProviderType.GOOGLE: [
        _m("gemini-2.5-flash-preview-05-20", "Gemini 2.5 Flash", 1048576, True, True, True),
        _m("gemini-2.0-flash", "Gemini 2.0 Flash", 1048576, True, True),
    ],
    ProviderType.OLLAMA: [
        _m("llama3.2:3b", "Llama 3.2 (3B)", 8192, False, False, True),
    ],
    ProviderType.DEEPSEEK: [
        _m("deepseek-chat", "DeepSeek Chat", 64000, False, True, True),
        _m("deepseek-reasoner", "DeepSeek Reasoner", 64000, False, True),
    ],
    ProviderType.MISTRAL: [
        _m("mistral-large-latest", "Mistral Large", 128000, False, True, True),
    ],
    ProviderType.COHERE: [
        _m("command-r-plus", "Command R+", 128000, False, True, True),
    ],
    ProviderType.XAI: [
        _m("grok-3", "Grok 3", 131072, True, True, True),
    ],
    ProviderType.ZHIPU: [
        _m("glm-4v-plus", "GLM-4V Plus", 8192, True, True, True),
    ],
    ProviderType.MOONSHOT: [
        _m("kimi-k2.5-preview", "Kimi K2.5", 256000, False, True, True),
    ],
    ProviderType.OPENROUTER: [
        _m("openai/gpt-4o", "GPT-4o (via OpenRouter)", 128000, True, True, True),
        _m("openai/gpt-4o-mini", "GPT-4o Mini (via OpenRouter)", 128000, True, True),
        _m("anthropic/claude-sonnet-4-5", "Claude Sonnet 4.5 (via OpenRouter)", 200000, True, True),
        _m("google/gemini-2.5-flash", "Gemini 2.5 Flash (via OpenRouter)", 1000000, True, True),
    ],
    ProviderType.CUSTOM: [],
}

# 已知的功能类型（开放集合，未登记的功能视为没有映射规则）
FEATURE_TYPES = (
    "learning_analysis",
    "counseling_suggest",
    "report_generate",
    "face_analysis",
    "palm_analysis",
    "personality_summary",
    "saju_analysis",
    "mbti_analysis",
    "vark_analysis",
    "name_analysis",
    "zodiac_analysis",
    "compatibility_analysis",
    "general_chat",
)


def get_static_config(provider_type: ProviderType) -> ProviderStaticConfig:
    return PROVIDER_STATIC_CONFIGS[ProviderType(provider_type)]


def get_default_models(provider_type: ProviderType) -> list[dict[str, Any]]:
    """获取Provider类型的默认模型模板（返回副本）"""
    return [dict(m) for m in DEFAULT_MODELS.get(ProviderType(provider_type), [])]
