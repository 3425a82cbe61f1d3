"""
OpenAI Provider适配器
支持官方OpenAI API以及所有OpenAI兼容的API服务
"""

from collections.abc import AsyncGenerator
from typing import Any, Optional

from llm_gateway.types import ModelInfo, ProviderType, TokenUsage
from llm_gateway.utils.logger import get_logger

from ..base import (
    BaseAdapter,
    ConnectionConfig,
    GenerateRequest,
    GenerateResponse,
    content_parts,
)

logger = get_logger(__name__)


class OpenAICompatibleAdapter(BaseAdapter):
    """OpenAI兼容接口适配器（/chat/completions, /models）"""

    supports_tools = True
    supports_json_mode = True

    def convert_messages(self, request: GenerateRequest) -> list[dict[str, Any]]:
        """转换为OpenAI消息格式，图片转为 data URL"""
        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})

        for message in request.build_messages():
            content = message.get("content")
            if isinstance(content, str):
                messages.append({"role": message["role"], "content": content})
                continue

            parts = []
            for part in content_parts(content):
                if part.get("type") == "image":
                    mime_type = part.get("mime_type", "image/jpeg")
                    parts.append(
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{part['image']}"},
                        }
                    )
                else:
                    parts.append({"type": "text", "text": part.get("text", "")})
            messages.append({"role": message["role"], "content": parts})

        return messages

    def build_payload(self, request: GenerateRequest, stream: bool = False) -> dict[str, Any]:
        payload = {
            "model": request.model.model_id,
            "messages": self.convert_messages(request),
            "stream": stream,
            **self.normalize_params(request.params()),
        }
        if stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """OpenAI聊天完成"""
        url = f"{request.model.base_url}/chat/completions"
        data = await self._request_json(
            "POST",
            url,
            headers=request.model.headers,
            payload=self.build_payload(request),
            timeout=request.timeout,
            max_retries=request.max_retries,
        )

        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        usage = data.get("usage") or {}

        return GenerateResponse(
            text=message.get("content") or "",
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
            model=data.get("model", request.model.model_id),
            finish_reason=choice.get("finish_reason"),
            raw=data,
        )

    async def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        url = f"{request.model.base_url}/chat/completions"
        async for chunk in self._iter_sse_json(
            url, request.model.headers, self.build_payload(request, stream=True), request.timeout
        ):
            chunk_usage = chunk.get("usage")
            if chunk_usage:
                usage.input_tokens = chunk_usage.get("prompt_tokens", 0)
                usage.output_tokens = chunk_usage.get("completion_tokens", 0)

            choices = chunk.get("choices") or []
            if not choices:
                continue
            delta = choices[0].get("delta") or {}
            if delta.get("content"):
                yield delta["content"]

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        """获取模型列表"""
        url = f"{self.resolve_base_url(connection)}/models"
        data = await self._request_json(
            "GET",
            url,
            headers=self.get_auth_headers(connection),
            timeout=self.list_models_timeout,
        )

        models = []
        for item in data.get("data", []):
            info = self.parse_model(item)
            if info is not None:
                models.append(info)
        return models

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        """把 /models 返回的条目转换为 ModelInfo，返回 None 表示忽略"""
        model_id = item.get("id")
        if not model_id:
            return None
        return ModelInfo(model_id=model_id, display_name=model_id)


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI适配器"""

    provider_type = ProviderType.OPENAI
    default_base_url = "https://api.openai.com/v1"
    supports_vision = True

    # 仅保留聊天模型
    CHAT_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")
    EXCLUDED_KEYWORDS = ("embedding", "whisper", "tts", "dall-e", "realtime", "audio", "transcribe")

    def parse_model(self, item: dict[str, Any]) -> Optional[ModelInfo]:
        model_id = item.get("id", "")
        if not model_id.startswith(self.CHAT_MODEL_PREFIXES):
            return None
        if any(keyword in model_id for keyword in self.EXCLUDED_KEYWORDS):
            return None
        return ModelInfo(
            model_id=model_id,
            display_name=model_id,
            supports_vision=model_id.startswith(("gpt-4o", "gpt-4.1", "gpt-5", "o")),
            supports_tools=True,
        )
