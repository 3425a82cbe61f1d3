"""
拒答检测
模型以自然语言拒绝回答时视为该候选失败
"""

import re

REFUSAL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^I('m| am) sorry,? I (can't|cannot|won't|will not)",
        r"^I('m| am) not able to",
        r"^I (can't|cannot) assist with",
        r"^I('m| am) unable to",
        r"^Sorry,? (but )?I (can't|cannot)",
        r"^As an AI,? I (can't|cannot|don't)",
        r"^I apologize,? but I (can't|cannot)",
    )
)

DEFAULT_MAX_LENGTH = 500


def is_refusal(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> bool:
    """
    判断响应是否为拒答

    只检查较短的响应，避免把恰好包含这些短语的长JSON结果误判为拒答。

    Args:
        text: 模型输出
        max_length: 超过该长度的响应不做检测
    """
    if not text:
        return False
    stripped = text.strip()
    if len(stripped) > max_length:
        return False
    return any(pattern.search(stripped) for pattern in REFUSAL_PATTERNS)
