"""错误分类与拒答检测测试"""

import sys
from pathlib import Path

import pytest

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from llm_gateway.providers import ProviderAuthError, ProviderRateLimitError
from llm_gateway.routing import classify_error, is_refusal, is_retryable_error


class TestErrorClassifier:
    """重试分类"""

    @pytest.mark.parametrize(
        "message, rule",
        [
            ("HTTP 429 Too Many Requests", "rate_limit"),
            ("Rate limit exceeded", "rate_limit"),
            ("503 Service Unavailable", "service_unavailable"),
            ("Request timed out after 120s", "network"),
            ("connect ECONNREFUSED 127.0.0.1:11434", "network"),
            ("getaddrinfo ENOTFOUND api.example.com", "network"),
            ("TypeError: fetch failed", "network"),
            ("HTTP 502 Bad Gateway", "server_error"),
        ],
    )
    def test_retryable(self, message, rule):
        assert classify_error(message) == (rule, True)

    @pytest.mark.parametrize("message", ["HTTP 400 invalid request", "401 Unauthorized", "HTTP 403 forbidden"])
    def test_client_errors_stop_failover(self, message):
        assert classify_error(message) == ("client_error", False)
        assert is_retryable_error(message) is False

    def test_first_matching_rule_wins(self):
        """同时出现 429 和 400 时按规则顺序判定为可重试"""
        assert is_retryable_error("upstream 400 wrapped a 429 rate limit") is True

    def test_unknown_is_retryable(self):
        assert classify_error("something strange") == ("unknown", True)

    def test_accepts_exceptions(self):
        assert is_retryable_error(ProviderRateLimitError("[openai] 速率限制 (HTTP 429 rate limit): slow down", 429))
        assert not is_retryable_error(ProviderAuthError("[openai] 认证失败 (HTTP 401): invalid key", 401))

    def test_case_insensitive(self):
        assert classify_error("NETWORK ERROR")[0] == "network"


class TestRefusal:
    """拒答检测"""

    @pytest.mark.parametrize(
        "text",
        [
            "I'm sorry, I can't help with that.",
            "I am sorry I cannot do this",
            "I'm not able to provide that information.",
            "I cannot assist with this request.",
            "I'm unable to analyze this image.",
            "Sorry, but I can't do that.",
            "As an AI, I don't have opinions.",
            "I apologize, but I cannot comply.",
            "  i'm sorry, i won't answer  ",
        ],
    )
    def test_refusals(self, text):
        assert is_refusal(text) is True

    @pytest.mark.parametrize(
        "text",
        [
            "",
            '{"result": "ok"}',
            "Here is the analysis. I'm sorry, I can't be more precise.",
            "The answer is 42.",
        ],
    )
    def test_non_refusals(self, text):
        assert is_refusal(text) is False

    def test_long_responses_are_not_checked(self):
        text = "I'm sorry, I can't " + "a" * 500
        assert is_refusal(text) is False
        assert is_refusal(text, max_length=1000) is True
