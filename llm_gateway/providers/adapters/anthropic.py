"""
Anthropic Provider适配器
支持Claude系列模型（/messages 接口）
"""

from collections.abc import AsyncGenerator
from typing import Any, Optional

from llm_gateway.types import ModelInfo, ProviderType, TokenUsage, ValidationResult
from llm_gateway.utils.logger import get_logger

from ..base import (
    BaseAdapter,
    ConnectionConfig,
    GenerateRequest,
    GenerateResponse,
    ProviderError,
    content_parts,
    content_text,
)

logger = get_logger(__name__)

# Anthropic 没有公开的模型列表接口，使用静态列表
ANTHROPIC_MODELS = [
    ModelInfo("claude-sonnet-4-5", "Claude Sonnet 4.5", 200000, True, True),
    ModelInfo("claude-opus-4-1", "Claude Opus 4.1", 200000, True, True),
    ModelInfo("claude-3-7-sonnet-latest", "Claude 3.7 Sonnet", 200000, True, True),
    ModelInfo("claude-3-5-haiku-latest", "Claude 3.5 Haiku", 200000, True, True),
]


class AnthropicAdapter(BaseAdapter):
    """Anthropic适配器"""

    provider_type = ProviderType.ANTHROPIC
    default_base_url = "https://api.anthropic.com/v1"
    supports_vision = True
    supports_tools = True

    api_version = "2023-06-01"
    default_max_tokens = 4096
    validation_model = "claude-3-5-haiku-latest"

    def vendor_auth_headers(self, api_key: str) -> dict[str, str]:
        """获取Anthropic认证头"""
        return {"x-api-key": api_key}

    def get_auth_headers(self, connection: Optional[ConnectionConfig]) -> dict[str, str]:
        headers = super().get_auth_headers(connection)
        headers["anthropic-version"] = self.api_version
        return headers

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        normalized = {
            "temperature": params.get("temperature", 0.7),
            "max_tokens": params.get("max_output_tokens") or self.default_max_tokens,
            "top_p": params.get("top_p"),
        }
        return {k: v for k, v in normalized.items() if v is not None}

    def convert_messages(self, request: GenerateRequest) -> tuple[Optional[str], list[dict[str, Any]]]:
        """转换为Anthropic消息格式，system 消息单独提取"""
        system_parts = [request.system] if request.system else []
        messages: list[dict[str, Any]] = []

        for message in request.build_messages():
            role = message["role"]
            content = message.get("content")
            if role == "system":
                system_parts.append(content_text(content))
                continue

            if isinstance(content, str):
                messages.append({"role": role, "content": content})
                continue

            blocks = []
            for part in content_parts(content):
                if part.get("type") == "image":
                    blocks.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": part.get("mime_type", "image/jpeg"),
                                "data": part["image"],
                            },
                        }
                    )
                else:
                    blocks.append({"type": "text", "text": part.get("text", "")})
            messages.append({"role": role, "content": blocks})

        system = "\n\n".join(p for p in system_parts if p) or None
        return system, messages

    def build_payload(self, request: GenerateRequest, stream: bool = False) -> dict[str, Any]:
        system, messages = self.convert_messages(request)
        payload = {
            "model": request.model.model_id,
            "messages": messages,
            **self.normalize_params(request.params()),
        }
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Anthropic消息完成"""
        data = await self._request_json(
            "POST",
            f"{request.model.base_url}/messages",
            headers=request.model.headers,
            payload=self.build_payload(request),
            timeout=request.timeout,
            max_retries=request.max_retries,
        )

        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        usage = data.get("usage") or {}

        return GenerateResponse(
            text=text,
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            model=data.get("model", request.model.model_id),
            finish_reason=data.get("stop_reason"),
            raw=data,
        )

    async def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        async for event in self._iter_sse_json(
            f"{request.model.base_url}/messages",
            request.model.headers,
            self.build_payload(request, stream=True),
            request.timeout,
        ):
            event_type = event.get("type")
            if event_type == "message_start":
                start_usage = (event.get("message") or {}).get("usage") or {}
                usage.input_tokens = start_usage.get("input_tokens", 0)
            elif event_type == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("text"):
                    yield delta["text"]
            elif event_type == "message_delta":
                usage.output_tokens = (event.get("usage") or {}).get("output_tokens", 0)
            elif event_type == "error":
                error = event.get("error") or {}
                raise ProviderError(f"[anthropic] stream error: {error.get('message', error)}")

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        return list(ANTHROPIC_MODELS)

    async def validate(self, connection: ConnectionConfig) -> ValidationResult:
        """用1个token的生成请求校验密钥"""
        if not self.resolve_api_key(connection):
            return ValidationResult(is_valid=False, error="API key is not set")

        handle = self.create_model(self.validation_model, connection)
        request = GenerateRequest(
            model=handle, prompt="Hi", max_output_tokens=1, timeout=self.validation_timeout
        )
        try:
            await self.generate(request)
            return ValidationResult(is_valid=True)
        except ProviderError as e:
            logger.warning(f"Anthropic 连接校验失败: {e}")
            return ValidationResult(is_valid=False, error=str(e))
