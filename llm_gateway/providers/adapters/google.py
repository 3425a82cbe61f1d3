"""
Google Gemini Provider适配器
使用 generativelanguage v1beta 接口
"""

from collections.abc import AsyncGenerator
from typing import Any

from llm_gateway.types import ModelInfo, ProviderType, TokenUsage
from llm_gateway.utils.logger import get_logger

from ..base import (
    BaseAdapter,
    ConnectionConfig,
    GenerateRequest,
    GenerateResponse,
    content_parts,
    content_text,
)

logger = get_logger(__name__)


class GoogleAdapter(BaseAdapter):
    """Google Gemini适配器"""

    provider_type = ProviderType.GOOGLE
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    supports_vision = True
    supports_tools = True
    supports_json_mode = True

    def vendor_auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-goog-api-key": api_key}

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        normalized = {
            "temperature": params.get("temperature", 0.7),
            "maxOutputTokens": params.get("max_output_tokens"),
            "topP": params.get("top_p"),
        }
        return {k: v for k, v in normalized.items() if v is not None}

    def build_payload(self, request: GenerateRequest) -> dict[str, Any]:
        system_parts = [request.system] if request.system else []
        contents = []

        for message in request.build_messages():
            role = message["role"]
            if role == "system":
                system_parts.append(content_text(message.get("content")))
                continue

            parts = []
            for part in content_parts(message.get("content")):
                if part.get("type") == "image":
                    parts.append(
                        {
                            "inline_data": {
                                "mime_type": part.get("mime_type", "image/jpeg"),
                                "data": part["image"],
                            }
                        }
                    )
                else:
                    parts.append({"text": part.get("text", "")})
            contents.append({"role": "model" if role == "assistant" else "user", "parts": parts})

        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": self.normalize_params(request.params()),
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        return payload

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    @staticmethod
    def _apply_usage(data: dict[str, Any], usage: TokenUsage) -> None:
        metadata = data.get("usageMetadata") or {}
        if metadata:
            usage.input_tokens = metadata.get("promptTokenCount", 0)
            usage.output_tokens = metadata.get("candidatesTokenCount", 0)

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        url = f"{request.model.base_url}/models/{request.model.model_id}:generateContent"
        data = await self._request_json(
            "POST",
            url,
            headers=request.model.headers,
            payload=self.build_payload(request),
            timeout=request.timeout,
            max_retries=request.max_retries,
        )

        usage = TokenUsage()
        self._apply_usage(data, usage)
        candidates = data.get("candidates") or [{}]

        return GenerateResponse(
            text=self._extract_text(data),
            usage=usage,
            model=request.model.model_id,
            finish_reason=candidates[0].get("finishReason"),
            raw=data,
        )

    async def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        url = f"{request.model.base_url}/models/{request.model.model_id}:streamGenerateContent?alt=sse"
        async for chunk in self._iter_sse_json(
            url, request.model.headers, self.build_payload(request), request.timeout
        ):
            self._apply_usage(chunk, usage)
            text = self._extract_text(chunk)
            if text:
                yield text

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        data = await self._request_json(
            "GET",
            f"{self.resolve_base_url(connection)}/models",
            headers=self.get_auth_headers(connection),
            timeout=self.list_models_timeout,
        )

        models = []
        for item in data.get("models", []):
            if "generateContent" not in (item.get("supportedGenerationMethods") or []):
                continue
            model_id = item.get("name", "").removeprefix("models/")
            if not model_id:
                continue
            models.append(
                ModelInfo(
                    model_id=model_id,
                    display_name=item.get("displayName") or model_id,
                    context_window=item.get("inputTokenLimit"),
                    supports_vision=model_id.startswith("gemini"),
                    supports_tools=model_id.startswith("gemini"),
                )
            )
        return models
