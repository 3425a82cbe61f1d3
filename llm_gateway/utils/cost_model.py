"""
成本模型
静态的按Provider计价表，以及成本估算和按成本排序的纯函数
"""

from typing import Iterable, Union

from llm_gateway.types import ProviderType

# 每百万token价格（美元）
COST_PER_MILLION_TOKENS: dict[str, dict[str, float]] = {
    ProviderType.ANTHROPIC.value: {"input": 3.0, "output": 15.0},
    ProviderType.OPENAI.value: {"input": 2.5, "output": 10.0},
    ProviderType.GOOGLE.value: {"input": 0.30, "output": 2.50},
    ProviderType.OLLAMA.value: {"input": 0.0, "output": 0.0},
    ProviderType.DEEPSEEK.value: {"input": 0.27, "output": 1.10},
    ProviderType.MISTRAL.value: {"input": 2.0, "output": 6.0},
    ProviderType.COHERE.value: {"input": 2.5, "output": 10.0},
    ProviderType.XAI.value: {"input": 3.0, "output": 15.0},
    ProviderType.ZHIPU.value: {"input": 0.35, "output": 1.40},
    ProviderType.MOONSHOT.value: {"input": 1.0, "output": 4.0},
    ProviderType.OPENROUTER.value: {"input": 2.5, "output": 10.0},
}

ZERO_RATE = {"input": 0.0, "output": 0.0}

# 需要视觉能力的功能及支持视觉的Provider
VISION_FEATURES = frozenset({"face_analysis", "palm_analysis"})
VISION_PROVIDERS = frozenset(
    {
        ProviderType.ANTHROPIC.value,
        ProviderType.OPENAI.value,
        ProviderType.GOOGLE.value,
        ProviderType.XAI.value,
        ProviderType.ZHIPU.value,
    }
)

ProviderName = Union[str, ProviderType]


def _key(provider: ProviderName) -> str:
    return provider.value if isinstance(provider, ProviderType) else provider


def get_rates(provider: ProviderName) -> dict[str, float]:
    """获取Provider的计价，未知或自定义Provider按0计"""
    return COST_PER_MILLION_TOKENS.get(_key(provider), ZERO_RATE)


def calculate_cost(provider: ProviderName, input_tokens: int, output_tokens: int) -> float:
    """
    计算请求成本

    Args:
        provider: Provider类型
        input_tokens: 输入token数
        output_tokens: 输出token数

    Returns:
        成本（美元），保留6位小数
    """
    rates = get_rates(provider)
    input_cost = (input_tokens / 1_000_000) * rates["input"]
    output_cost = (output_tokens / 1_000_000) * rates["output"]
    return round(input_cost + output_cost, 6)


def estimate_cost(
    provider: ProviderName, estimated_input_tokens: int, estimated_output_tokens: int
) -> float:
    """按预估token数计算预期成本"""
    return calculate_cost(provider, estimated_input_tokens, estimated_output_tokens)


def cost_score(provider: ProviderName) -> float:
    """排序用成本分数，假设 input:output = 1:2"""
    rates = get_rates(provider)
    return rates["input"] + rates["output"] * 2


def is_free_provider(provider: ProviderName) -> bool:
    rates = get_rates(provider)
    return rates["input"] == 0 and rates["output"] == 0


def optimize_provider_order(enabled_providers: Iterable[ProviderName], feature_type: str) -> list[str]:
    """
    按成本优化Provider顺序（便宜的在前）

    视觉类功能先过滤掉不支持视觉的Provider，再排序。

    Args:
        enabled_providers: 已启用的Provider类型
        feature_type: 功能类型

    Returns:
        排序后的Provider类型列表
    """
    providers = [_key(p) for p in enabled_providers]

    if feature_type in VISION_FEATURES:
        providers = [p for p in providers if p in VISION_PROVIDERS]

    return sorted(providers, key=cost_score)
