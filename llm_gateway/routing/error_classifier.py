"""
错误重试分类
按顺序匹配错误消息（不区分大小写），第一条命中的规则决定是否切换到下一个候选
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class RetryRule:
    name: str
    patterns: tuple[str, ...]
    retryable: bool

    def matches(self, message: str) -> bool:
        return any(pattern in message for pattern in self.patterns)


RETRY_RULES: tuple[RetryRule, ...] = (
    RetryRule("rate_limit", ("rate limit", "rate_limit", "429", "too many requests"), True),
    RetryRule("service_unavailable", ("503", "service unavailable"), True),
    RetryRule(
        "network",
        (
            "network",
            "timeout",
            "timed out",
            "econnrefused",
            "connection refused",
            "enotfound",
            "host not found",
            "name or service not known",
            "fetch failed",
        ),
        True,
    ),
    RetryRule("server_error", ("500", "502", "504"), True),
    # 请求格式或凭据问题，换Provider也无法修复
    RetryRule("client_error", ("400", "401", "403"), False),
)

# 未知错误默认视为临时错误
DEFAULT_RETRYABLE = True


def classify_error(error: Union[BaseException, str]) -> tuple[str, bool]:
    """
    分类错误

    Args:
        error: 异常或错误消息

    Returns:
        (命中的规则名, 是否可重试)，未命中时规则名为 "unknown"
    """
    message = str(error).lower()
    for rule in RETRY_RULES:
        if rule.matches(message):
            return rule.name, rule.retryable
    return "unknown", DEFAULT_RETRYABLE


def is_retryable_error(error: Union[BaseException, str]) -> bool:
    """判断错误是否应该切换到下一个候选Provider"""
    return classify_error(error)[1]
