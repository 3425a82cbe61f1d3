"""Provider适配器测试（使用 httpx.MockTransport 模拟厂商接口）"""

import json
import sys
from pathlib import Path

import httpx
import pytest

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from conftest import FakeAdapter

from llm_gateway.exceptions import AdapterNotFoundException, ErrorCode
from llm_gateway.providers import (
    AdapterFactory,
    ConnectionConfig,
    GenerateRequest,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRequestError,
    ProviderServerError,
)
from llm_gateway.providers.adapters import (
    AnthropicAdapter,
    CohereAdapter,
    GoogleAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
    ZhipuAdapter,
)
from llm_gateway.types import AuthType, ProviderType


class Recorder:
    """记录请求并按顺序返回预设响应"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


def make_adapter(adapter_class, recorder, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return adapter_class(client=client, **kwargs)


def sse(*events):
    return "".join(f"data: {json.dumps(e) if not isinstance(e, str) else e}\n\n" for e in events)


def connection(provider_type, **kwargs):
    kwargs.setdefault("api_key", "sk-test-key")
    return ConnectionConfig(provider_type=provider_type, **kwargs)


class TestOpenAIAdapter:
    """OpenAI兼容接口"""

    async def test_generate(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "model": "gpt-4o",
                    "choices": [{"message": {"content": "hi there"}, "finish_reason": "stop"}],
                    "usage": {"prompt_tokens": 12, "completion_tokens": 4},
                },
            )
        )
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        response = await adapter.generate(
            GenerateRequest(model=handle, prompt="hello", system="be brief", max_output_tokens=100)
        )

        assert response.text == "hi there"
        assert response.usage.input_tokens == 12
        assert response.usage.output_tokens == 4
        assert response.finish_reason == "stop"

        request = recorder.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-key"
        assert recorder.last_json == {
            "model": "gpt-4o",
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "hello"},
            ],
            "stream": False,
            "temperature": 0.7,
            "max_tokens": 100,
        }

    async def test_image_parts_become_data_urls(self):
        recorder = Recorder(httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "describe"},
                    {"type": "image", "image": "aGVsbG8=", "mime_type": "image/png"},
                ],
            }
        ]

        await adapter.generate(GenerateRequest(model=handle, messages=messages))

        content = recorder.last_json["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "describe"}
        assert content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGVsbG8="}}

    async def test_auth_error(self):
        recorder = Recorder(httpx.Response(401, json={"error": {"message": "invalid key"}}))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        with pytest.raises(ProviderAuthError) as exc_info:
            await adapter.generate(GenerateRequest(model=handle, prompt="hi", max_retries=3))

        assert exc_info.value.status_code == 401
        assert "401" in str(exc_info.value)
        assert "invalid key" in str(exc_info.value)
        assert len(recorder.requests) == 1

    async def test_service_unavailable_message(self):
        recorder = Recorder(httpx.Response(503, text="overloaded"))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        with pytest.raises(ProviderServerError) as exc_info:
            await adapter.generate(GenerateRequest(model=handle, prompt="hi"))

        assert "service unavailable" in str(exc_info.value)

    async def test_bad_request(self):
        recorder = Recorder(httpx.Response(400, json={"message": "bad input"}))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        with pytest.raises(ProviderRequestError) as exc_info:
            await adapter.generate(GenerateRequest(model=handle, prompt="hi"))

        assert "bad input" in str(exc_info.value)

    async def test_retries_server_errors(self):
        recorder = Recorder(
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, json={"choices": [{"message": {"content": "recovered"}}]}),
        )
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        response = await adapter.generate(GenerateRequest(model=handle, prompt="hi", max_retries=1))

        assert response.text == "recovered"
        assert len(recorder.requests) == 2

    async def test_network_error(self):
        recorder = Recorder(httpx.ConnectError("connection refused"))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        with pytest.raises(ProviderNetworkError) as exc_info:
            await adapter.generate(GenerateRequest(model=handle, prompt="hi"))

        assert "network" in str(exc_info.value)

    async def test_stream(self):
        body = sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}},
            "[DONE]",
        )
        recorder = Recorder(httpx.Response(200, text=body))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        stream = await adapter.stream(GenerateRequest(model=handle, prompt="hi"))
        chunks = [chunk async for chunk in stream.chunks]

        assert chunks == ["Hel", "lo"]
        assert stream.usage.input_tokens == 3
        assert stream.usage.output_tokens == 2
        assert recorder.last_json["stream_options"] == {"include_usage": True}

    async def test_stream_error_status(self):
        recorder = Recorder(httpx.Response(429, json={"error": {"message": "slow down"}}))
        adapter = make_adapter(OpenAIAdapter, recorder)
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI))

        stream = await adapter.stream(GenerateRequest(model=handle, prompt="hi"))
        with pytest.raises(ProviderError) as exc_info:
            async for _ in stream.chunks:
                pass

        assert "rate limit" in str(exc_info.value)

    async def test_list_models_keeps_chat_models(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "gpt-4o"},
                        {"id": "gpt-4o-mini-transcribe"},
                        {"id": "text-embedding-3-small"},
                        {"id": "o3-mini"},
                        {"id": "dall-e-3"},
                    ]
                },
            )
        )
        adapter = make_adapter(OpenAIAdapter, recorder)

        models = await adapter.list_models(connection(ProviderType.OPENAI))

        assert [m.model_id for m in models] == ["gpt-4o", "o3-mini"]
        assert models[0].supports_vision is True

    async def test_validate(self):
        adapter = make_adapter(OpenAIAdapter, Recorder(httpx.Response(200, json={"data": []})))
        assert (await adapter.validate(connection(ProviderType.OPENAI))).is_valid is True

        missing = await adapter.validate(ConnectionConfig(provider_type=ProviderType.OPENAI))
        assert missing.is_valid is False
        assert missing.error == "API key is not set"

        failing = make_adapter(OpenAIAdapter, Recorder(httpx.Response(401, text="nope")))
        result = await failing.validate(connection(ProviderType.OPENAI))
        assert result.is_valid is False
        assert "401" in result.error


class TestAuthHeaders:
    """认证方式"""

    def test_custom_header(self):
        adapter = OpenAIAdapter()
        conn = connection(ProviderType.OPENAI, auth_type=AuthType.CUSTOM_HEADER, custom_auth_header="X-Key")
        assert adapter.get_auth_headers(conn) == {"X-Key": "sk-test-key"}

    def test_none(self):
        adapter = OpenAIAdapter()
        assert adapter.get_auth_headers(connection(ProviderType.OPENAI, auth_type=AuthType.NONE)) == {}

    def test_custom_base_url(self):
        adapter = OpenAIAdapter()
        handle = adapter.create_model("gpt-4o", connection(ProviderType.OPENAI, base_url="https://proxy.local/v1/"))
        assert handle.base_url == "https://proxy.local/v1"

    def test_zhipu_clamps_temperature(self):
        adapter = ZhipuAdapter()
        assert adapter.normalize_params({"temperature": 0})["temperature"] == 0.01
        assert adapter.normalize_params({"temperature": 1.5})["temperature"] == 1.0


class TestAnthropicAdapter:
    """Anthropic /messages"""

    async def test_generate(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": "Hello"}, {"type": "text", "text": " world"}],
                    "usage": {"input_tokens": 8, "output_tokens": 2},
                    "stop_reason": "end_turn",
                },
            )
        )
        adapter = make_adapter(AnthropicAdapter, recorder)
        handle = adapter.create_model(
            "claude-sonnet-4-5", connection(ProviderType.ANTHROPIC, auth_type=AuthType.API_KEY)
        )
        messages = [
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "hi"},
        ]

        response = await adapter.generate(GenerateRequest(model=handle, messages=messages))

        assert response.text == "Hello world"
        assert response.usage.total_tokens == 10

        request = recorder.requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-test-key"
        assert request.headers["anthropic-version"] == "2023-06-01"
        payload = recorder.last_json
        assert payload["system"] == "rules"
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        assert payload["max_tokens"] == 4096

    async def test_image_blocks(self):
        recorder = Recorder(httpx.Response(200, json={"content": []}))
        adapter = make_adapter(AnthropicAdapter, recorder)
        handle = adapter.create_model("claude-sonnet-4-5", connection(ProviderType.ANTHROPIC))
        messages = [{"role": "user", "content": [{"type": "image", "image": "AAAA"}]}]

        await adapter.generate(GenerateRequest(model=handle, messages=messages))

        block = recorder.last_json["messages"][0]["content"][0]
        assert block == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/jpeg", "data": "AAAA"},
        }

    async def test_stream_events(self):
        body = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 9}}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "!"}},
            {"type": "message_delta", "usage": {"output_tokens": 2}},
            {"type": "message_stop"},
        )
        adapter = make_adapter(AnthropicAdapter, Recorder(httpx.Response(200, text=body)))
        handle = adapter.create_model("claude-sonnet-4-5", connection(ProviderType.ANTHROPIC))

        stream = await adapter.stream(GenerateRequest(model=handle, prompt="hi"))
        chunks = [chunk async for chunk in stream.chunks]

        assert "".join(chunks) == "Hi!"
        assert (stream.usage.input_tokens, stream.usage.output_tokens) == (9, 2)

    async def test_stream_error_event(self):
        body = sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        adapter = make_adapter(AnthropicAdapter, Recorder(httpx.Response(200, text=body)))
        handle = adapter.create_model("claude-sonnet-4-5", connection(ProviderType.ANTHROPIC))

        stream = await adapter.stream(GenerateRequest(model=handle, prompt="hi"))
        with pytest.raises(ProviderError, match="Overloaded"):
            async for _ in stream.chunks:
                pass

    async def test_static_model_list(self):
        adapter = AnthropicAdapter()
        models = await adapter.list_models(connection(ProviderType.ANTHROPIC))
        assert "claude-sonnet-4-5" in [m.model_id for m in models]

    async def test_validate_sends_one_token_request(self):
        recorder = Recorder(httpx.Response(200, json={"content": []}))
        adapter = make_adapter(AnthropicAdapter, recorder)

        result = await adapter.validate(connection(ProviderType.ANTHROPIC))

        assert result.is_valid is True
        assert recorder.last_json["model"] == "claude-3-5-haiku-latest"
        assert recorder.last_json["max_tokens"] == 1


class TestGoogleAdapter:
    """Gemini generateContent"""

    async def test_generate(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": "bonjour"}]}, "finishReason": "STOP"}],
                    "usageMetadata": {"promptTokenCount": 6, "candidatesTokenCount": 1},
                },
            )
        )
        adapter = make_adapter(GoogleAdapter, recorder)
        handle = adapter.create_model("gemini-2.0-flash", connection(ProviderType.GOOGLE, auth_type=AuthType.API_KEY))

        response = await adapter.generate(
            GenerateRequest(model=handle, prompt="hello", system="translate", max_output_tokens=50)
        )

        assert response.text == "bonjour"
        assert response.usage.input_tokens == 6
        request = recorder.requests[0]
        assert request.url.path.endswith("/models/gemini-2.0-flash:generateContent")
        assert request.headers["x-goog-api-key"] == "sk-test-key"
        payload = recorder.last_json
        assert payload["systemInstruction"] == {"parts": [{"text": "translate"}]}
        assert payload["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert payload["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 50}

    async def test_list_models_filters_generate_content(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "models": [
                        {
                            "name": "models/gemini-2.0-flash",
                            "displayName": "Gemini 2.0 Flash",
                            "inputTokenLimit": 1048576,
                            "supportedGenerationMethods": ["generateContent"],
                        },
                        {"name": "models/text-embedding-004", "supportedGenerationMethods": ["embedContent"]},
                    ]
                },
            )
        )
        adapter = make_adapter(GoogleAdapter, recorder)

        models = await adapter.list_models(connection(ProviderType.GOOGLE))

        assert [m.model_id for m in models] == ["gemini-2.0-flash"]
        assert models[0].context_window == 1048576


class TestOllamaAdapter:
    """Ollama 本地服务"""

    async def test_generate_without_api_key(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={"model": "llama3.2:3b", "message": {"content": "yo"}, "prompt_eval_count": 4, "eval_count": 1},
            )
        )
        adapter = make_adapter(OllamaAdapter, recorder)
        handle = adapter.create_model(
            "llama3.2:3b", ConnectionConfig(provider_type=ProviderType.OLLAMA, base_url="http://gpu-box:11434")
        )

        response = await adapter.generate(GenerateRequest(model=handle, prompt="hi"))

        assert response.text == "yo"
        assert str(recorder.requests[0].url) == "http://gpu-box:11434/api/chat"
        assert "Authorization" not in recorder.requests[0].headers

    async def test_stream_ndjson(self):
        body = "\n".join(
            json.dumps(c)
            for c in [
                {"message": {"content": "a"}, "done": False},
                {"message": {"content": "b"}, "done": True, "prompt_eval_count": 2, "eval_count": 2},
            ]
        )
        adapter = make_adapter(OllamaAdapter, Recorder(httpx.Response(200, text=body)))
        handle = adapter.create_model("llama3.2:3b", ConnectionConfig(provider_type=ProviderType.OLLAMA))

        stream = await adapter.stream(GenerateRequest(model=handle, prompt="hi"))
        chunks = [chunk async for chunk in stream.chunks]

        assert chunks == ["a", "b"]
        assert stream.usage.total_tokens == 4

    async def test_validate(self):
        recorder = Recorder(
            httpx.Response(200, json={"version": "0.6.0"}),
            httpx.Response(200, json={"models": [{"name": "llava:7b"}]}),
        )
        adapter = make_adapter(OllamaAdapter, recorder)

        result = await adapter.validate(ConnectionConfig(provider_type=ProviderType.OLLAMA))

        assert result.is_valid is True
        assert result.details == {"model_count": 1}

    async def test_validate_unreachable(self):
        adapter = make_adapter(OllamaAdapter, Recorder(httpx.ConnectError("refused")))

        result = await adapter.validate(ConnectionConfig(provider_type=ProviderType.OLLAMA))

        assert result.is_valid is False
        assert "network" in result.error

    async def test_vision_models_detected(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={"models": [{"name": "llava:7b"}, {"name": "llama3.2:3b", "details": {"parameter_size": "3B"}}]},
            )
        )
        adapter = make_adapter(OllamaAdapter, recorder)

        models = await adapter.list_models(ConnectionConfig(provider_type=ProviderType.OLLAMA))

        assert [(m.model_id, m.supports_vision) for m in models] == [("llava:7b", True), ("llama3.2:3b", False)]
        assert models[1].display_name == "llama3.2:3b (3B)"


class TestCohereAdapter:
    async def test_history_and_preamble(self):
        recorder = Recorder(
            httpx.Response(200, json={"text": "sure", "meta": {"billed_units": {"input_tokens": 5, "output_tokens": 1}}})
        )
        adapter = make_adapter(CohereAdapter, recorder)
        handle = adapter.create_model("command-r", connection(ProviderType.COHERE))
        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]

        response = await adapter.generate(GenerateRequest(model=handle, messages=messages, system="sys"))

        assert response.text == "sure"
        assert response.usage.output_tokens == 1
        payload = recorder.last_json
        assert payload["message"] == "second"
        assert payload["preamble"] == "sys"
        assert payload["chat_history"] == [
            {"role": "USER", "message": "first"},
            {"role": "CHATBOT", "message": "reply"},
        ]


class TestOpenRouterAdapter:
    def test_attribution_headers(self):
        adapter = OpenRouterAdapter(app_title="Test App")
        handle = adapter.create_model("openai/gpt-4o", connection(ProviderType.OPENROUTER))
        assert handle.headers["X-Title"] == "Test App"
        assert handle.headers["Authorization"] == "Bearer sk-test-key"

    async def test_validate_insufficient_credits(self):
        adapter = make_adapter(OpenRouterAdapter, Recorder(httpx.Response(402, json={"error": "no credits"})))

        result = await adapter.validate(connection(ProviderType.OPENROUTER))

        assert result.is_valid is True
        assert result.details == {"status_code": 402}

    def test_parse_model(self):
        info = OpenRouterAdapter().parse_model(
            {"id": "qwen/qwen-vl", "architecture": {"input_modalities": ["text", "image"]}}
        )
        assert info.supports_vision is True
        assert info.display_name == "qwen-vl (via OpenRouter)"
        assert info.context_window == 4096


class TestAdapterFactory:
    """适配器查找表"""

    def test_builtin_types(self):
        factory = AdapterFactory()
        assert isinstance(factory.get_adapter("openai"), OpenAIAdapter)
        assert factory.get_adapter(ProviderType.OPENAI) is factory.get_adapter("openai")
        assert factory.has_adapter(ProviderType.CUSTOM) is False

    def test_custom_requires_registration(self):
        factory = AdapterFactory()
        with pytest.raises(AdapterNotFoundException) as exc_info:
            factory.get_adapter(ProviderType.CUSTOM)
        assert exc_info.value.error_code == ErrorCode.ADAPTER_NOT_FOUND

    def test_register_instance(self):
        factory = AdapterFactory()
        fake = FakeAdapter(ProviderType.CUSTOM)

        factory.register_adapter("custom", fake)

        assert factory.has_adapter("custom")
        assert factory.get_adapter(ProviderType.CUSTOM) is fake

    def test_register_class_overrides_builtin(self):
        factory = AdapterFactory()
        factory.register_adapter(ProviderType.OPENAI, OpenRouterAdapter)
        assert isinstance(factory.get_adapter("openai"), OpenRouterAdapter)
