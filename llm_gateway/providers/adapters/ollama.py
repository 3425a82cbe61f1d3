"""
Ollama Provider适配器
本地模型服务，无需API密钥
"""

import json
from collections.abc import AsyncGenerator
from typing import Any, Optional

import httpx

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

VISION_MODEL_KEYWORDS = ("llava", "vision", "bakllava", "moondream", "gemma3")


class OllamaAdapter(BaseAdapter):
    """Ollama适配器"""

    provider_type = ProviderType.OLLAMA
    default_base_url = "http://localhost:11434/api"
    supports_vision = True
    supports_json_mode = True
    requires_api_key = False

    def resolve_base_url(self, connection: Optional[ConnectionConfig]) -> str:
        # 兼容只填写了 http://host:11434 的情况
        base_url = super().resolve_base_url(connection)
        if not base_url.endswith("/api"):
            base_url = f"{base_url}/api"
        return base_url

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        normalized = {
            "temperature": params.get("temperature", 0.7),
            "num_predict": params.get("max_output_tokens"),
            "top_p": params.get("top_p"),
        }
        return {k: v for k, v in normalized.items() if v is not None}

    def build_payload(self, request: GenerateRequest, stream: bool = False) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})

        for message in request.build_messages():
            content = message.get("content")
            converted: dict[str, Any] = {"role": message["role"], "content": content_text(content)}
            images = [p["image"] for p in content_parts(content) if p.get("type") == "image"]
            if images:
                converted["images"] = images
            messages.append(converted)

        return {
            "model": request.model.model_id,
            "messages": messages,
            "stream": stream,
            "options": self.normalize_params(request.params()),
        }

    @staticmethod
    def _apply_usage(data: dict[str, Any], usage: TokenUsage) -> None:
        usage.input_tokens = data.get("prompt_eval_count", 0)
        usage.output_tokens = data.get("eval_count", 0)

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
        self._apply_usage(data, usage)
        return GenerateResponse(
            text=(data.get("message") or {}).get("content", ""),
            usage=usage,
            model=data.get("model", request.model.model_id),
            finish_reason=data.get("done_reason"),
            raw=data,
        )

    async def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        async for line in self._iter_lines(
            f"{request.model.base_url}/chat",
            request.model.headers,
            self.build_payload(request, stream=True),
            request.timeout,
        ):
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                continue

            if chunk.get("error"):
                raise ProviderError(f"[ollama] stream error: {chunk['error']}")

            text = (chunk.get("message") or {}).get("content")
            if text:
                yield text
            if chunk.get("done"):
                self._apply_usage(chunk, usage)

    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        data = await self._request_json(
            "GET",
            f"{self.resolve_base_url(connection)}/tags",
            headers=self.get_auth_headers(connection),
            timeout=self.list_models_timeout,
        )
        return [self._parse_model(item) for item in data.get("models", []) if item.get("name")]

    @staticmethod
    def _parse_model(item: dict[str, Any]) -> ModelInfo:
        name = item["name"]
        details = item.get("details") or {}
        families = details.get("families") or []
        supports_vision = "clip" in families or any(k in name for k in VISION_MODEL_KEYWORDS)
        return ModelInfo(
            model_id=name,
            display_name=f"{name} ({details['parameter_size']})" if details.get("parameter_size") else name,
            supports_vision=supports_vision,
        )

    async def validate(self, connection: ConnectionConfig) -> ValidationResult:
        """先探测 /version，再尝试 /tags"""
        base_url = self.resolve_base_url(connection)
        headers = self.get_auth_headers(connection)

        try:
            response = await self.client.get(
                f"{base_url}/version", headers=headers, timeout=self.validation_timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"Ollama 服务连接失败: {e}")
            return ValidationResult(is_valid=False, error=f"[Ollama] network error: {e}")

        if not response.is_success:
            return ValidationResult(
                is_valid=False, error=f"Ollama server connection failed: HTTP {response.status_code}"
            )

        try:
            tags = await self.client.get(
                f"{base_url}/tags", headers=headers, timeout=self.validation_timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"Ollama 模型列表获取失败: {e}")
            return ValidationResult(
                is_valid=True, error="Connected, but failed to list models"
            )

        if tags.status_code in (401, 403):
            return ValidationResult(
                is_valid=False, error=f"API key authentication failed: HTTP {tags.status_code}"
            )
        if not tags.is_success:
            return ValidationResult(
                is_valid=True, error=f"Connected, but failed to list models: HTTP {tags.status_code}"
            )

        try:
            models = tags.json().get("models") or []
        except ValueError:
            return ValidationResult(is_valid=False, error="Invalid response from /tags")

        if not models:
            return ValidationResult(is_valid=True, error="Connected, but no models are available")
        return ValidationResult(is_valid=True, details={"model_count": len(models)})
