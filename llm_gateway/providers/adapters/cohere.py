"""
Cohere Provider适配器
使用 v1 /chat 接口
"""

import json
from collections.abc import AsyncGenerator
from typing import Any

from llm_gateway.types import ModelInfo, ProviderType, TokenUsage
from llm_gateway.utils.logger import get_logger

from ..base import (
    BaseAdapter,
    ConnectionConfig,
    GenerateRequest,
    GenerateResponse,
    content_text,
)

logger = get_logger(__name__)

ROLE_MAP = {"user": "USER", "assistant": "CHATBOT", "system": "SYSTEM"}


class CohereAdapter(BaseAdapter):
    """Cohere适配器（不支持图片输入）"""

    provider_type = ProviderType.COHERE
    default_base_url = "https://api.cohere.com/v1"
    supports_tools = True

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        normalized = {
            "temperature": params.get("temperature", 0.7),
            "max_tokens": params.get("max_output_tokens"),
            "p": params.get("top_p"),
        }
        return {k: v for k, v in normalized.items() if v is not None}

    def build_payload(self, request: GenerateRequest, stream: bool = False) -> dict[str, Any]:
        messages = request.build_messages()
        history = [
            {"role": ROLE_MAP.get(m["role"], "USER"), "message": content_text(m.get("content"))}
            for m in messages[:-1]
        ]
        payload: dict[str, Any] = {
            "model": request.model.model_id,
            "message": content_text(messages[-1].get("content")) if messages else "",
            **self.normalize_params(request.params()),
        }
        if history:
            payload["chat_history"] = history
        if request.system:
            payload["preamble"] = request.system
        if stream:
            payload["stream"] = True
        return payload

    @staticmethod
    def _apply_usage(meta: dict[str, Any], usage: TokenUsage) -> None:
        billed = (meta or {}).get("billed_units") or {}
        usage.input_tokens = int(billed.get("input_tokens", 0))
        usage.output_tokens = int(billed.get("output_tokens", 0))

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        data = await self._request_json(
            "POST",
            f"{request.model.base_url}/chat",
            headers=request.model.headers,
            payload=self.build_payload(request),
            timeout=request.timeout,
            max_retries=request.max_retries,
        )

        usage = TokenUsage()
        self._apply_usage(data.get("meta"), usage)
        return GenerateResponse(
            text=data.get("text", ""),
            usage=usage,
            model=request.model.model_id,
            finish_reason=data.get("finish_reason"),
            raw=data,
        )

    async def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        # 流式返回为逐行JSON事件
        async for line in self._iter_lines(
            f"{request.model.base_url}/chat",
            request.model.headers,
            self.build_payload(request, stream=True),
            request.timeout,
        ):
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue

            event_type = event.get("event_type")
            if event_type == "text-generation" and event.get("text"):
                yield event["text"]
            elif event_type == "stream-end":
                self._apply_usage((event.get("response") or {}).get("meta"), usage)

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        data = await self._request_json(
            "GET",
            f"{self.resolve_base_url(connection)}/models",
            headers=self.get_auth_headers(connection),
            timeout=self.list_models_timeout,
        )

        models = []
        for item in data.get("models", []):
            if "chat" not in (item.get("endpoints") or []):
                continue
            name = item.get("name")
            if not name:
                continue
            models.append(
                ModelInfo(
                    model_id=name,
                    display_name=name,
                    context_window=item.get("context_length"),
                    supports_tools=True,
                )
            )
        return models
