"""
Provider基础适配器
所有Provider适配器的基类，定义统一接口：创建模型、生成、流式生成、校验、模型列表
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from llm_gateway.types import AuthType, ModelInfo, ProviderType, TokenUsage, ValidationResult
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ConnectionConfig:
    """已解密的连接配置，仅在内存中使用"""

    provider_type: ProviderType
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    auth_type: AuthType = AuthType.BEARER
    custom_auth_header: Optional[str] = None


@dataclass
class ModelHandle:
    """create_model 返回的模型句柄，绑定了地址与认证头"""

    provider_type: ProviderType
    model_id: str
    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    default_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerateRequest:
    """标准化的生成请求"""

    model: ModelHandle
    prompt: Optional[str] = None
    messages: Optional[list[dict[str, Any]]] = None
    system: Optional[str] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_retries: int = 0
    timeout: Optional[float] = None

    def build_messages(self) -> list[dict[str, Any]]:
        """messages 优先，否则把 prompt 包装成单条用户消息"""
        if self.messages:
            return self.messages
        return [{"role": "user", "content": self.prompt or ""}]

    def params(self) -> dict[str, Any]:
        """合并模型默认参数与请求参数（请求参数优先）"""
        params = dict(self.model.default_params)
        if self.max_output_tokens is not None:
            params["max_output_tokens"] = self.max_output_tokens
        if self.temperature is not None:
            params["temperature"] = self.temperature
        if self.top_p is not None:
            params["top_p"] = self.top_p
        return params


@dataclass
class GenerateResponse:
    """标准化的生成响应"""

    text: str
    usage: TokenUsage
    model: str
    finish_reason: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


@dataclass
class StreamResponse:
    """流式响应，usage 在流读取完毕后填充"""

    chunks: AsyncIterator[str]
    provider: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


def content_parts(content: Any) -> list[dict[str, Any]]:
    """
    把消息内容统一为分段列表

    支持的分段: {"type": "text", "text": ...}
               {"type": "image", "image": <base64>, "mime_type": "image/jpeg"}
    """
    if content is None:
        return []
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content)


def content_text(content: Any) -> str:
    """提取消息内容中的纯文本"""
    return "".join(
        part.get("text", "") for part in content_parts(content) if part.get("type") == "text"
    )


class BaseAdapter(ABC):
    """Provider适配器基类"""

    provider_type: ProviderType = ProviderType.CUSTOM
    default_base_url: str = ""

    # 能力标记
    supports_vision: bool = False
    supports_streaming: bool = True
    supports_tools: bool = False
    supports_json_mode: bool = False
    requires_api_key: bool = True

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        validation_timeout: float = 10.0,
        list_models_timeout: float = 15.0,
    ):
        """
        初始化适配器

        Args:
            client: 共享的HTTP客户端，为空时懒加载
            timeout: 生成请求超时（秒）
            validation_timeout: 连通性校验超时（秒）
            list_models_timeout: 模型列表请求超时（秒）
        """
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.validation_timeout = validation_timeout
        self.list_models_timeout = list_models_timeout

        self.api_key: Optional[str] = None
        self.base_url: str = self.default_base_url

    @property
    def client(self) -> httpx.AsyncClient:
        """获取HTTP客户端（懒加载）"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """关闭自己创建的HTTP客户端"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # 凭据与地址
    # ------------------------------------------------------------------

    def set_api_key(self, api_key: Optional[str]) -> None:
        """设置默认API密钥（连接配置中未提供时使用）"""
        self.api_key = api_key

    def set_base_url(self, base_url: Optional[str]) -> None:
        """设置默认基础地址"""
        self.base_url = base_url or self.default_base_url

    def resolve_base_url(self, connection: Optional[ConnectionConfig]) -> str:
        base_url = (connection.base_url if connection else None) or self.base_url
        return base_url.rstrip("/")

    def resolve_api_key(self, connection: Optional[ConnectionConfig]) -> Optional[str]:
        return (connection.api_key if connection else None) or self.api_key

    def vendor_auth_headers(self, api_key: str) -> dict[str, str]:
        """厂商默认的认证头，子类可覆盖"""
        return {"Authorization": f"Bearer {api_key}"}

    def get_auth_headers(self, connection: Optional[ConnectionConfig]) -> dict[str, str]:
        """
        按认证方式生成请求头

        Args:
            connection: 连接配置

        Returns:
            认证头字典（无密钥时为空）
        """
        api_key = self.resolve_api_key(connection)
        if not api_key:
            return {}

        auth_type = connection.auth_type if connection else AuthType.BEARER
        if auth_type == AuthType.NONE:
            return {}
        if auth_type == AuthType.BEARER:
            return {"Authorization": f"Bearer {api_key}"}
        if auth_type == AuthType.CUSTOM_HEADER:
            if connection and connection.custom_auth_header:
                return {connection.custom_auth_header: api_key}
            logger.warning(f"{self.provider_type.value} 未设置自定义认证头名称，使用默认认证方式")
        return self.vendor_auth_headers(api_key)

    # ------------------------------------------------------------------
    # 统一接口
    # ------------------------------------------------------------------

    def create_model(
        self,
        model_id: str,
        connection: Optional[ConnectionConfig] = None,
        default_params: Optional[dict[str, Any]] = None,
    ) -> ModelHandle:
        """创建绑定了连接信息的模型句柄"""
        return ModelHandle(
            provider_type=self.provider_type,
            model_id=model_id,
            base_url=self.resolve_base_url(connection),
            headers=self.get_auth_headers(connection),
            default_params=dict(default_params or {}),
        )

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """
        文本生成

        Args:
            request: 标准化生成请求

        Returns:
            标准化生成响应
        """

    async def stream(self, request: GenerateRequest) -> StreamResponse:
        """
        流式文本生成

        Returns:
            StreamResponse，chunks 读取完毕后 usage 被填充
        """
        usage = TokenUsage()
        return StreamResponse(
            chunks=self._stream_chunks(request, usage),
            provider=self.provider_type.value,
            model=request.model.model_id,
            usage=usage,
        )

    @abstractmethod
    def _stream_chunks(
        self, request: GenerateRequest, usage: TokenUsage
    ) -> AsyncGenerator[str, None]:
        """产出文本片段，并在结束时写入 usage"""

    @abstractmethod
    async def list_models(self, connection: ConnectionConfig) -> list[ModelInfo]:
        """
        获取可用模型列表

        Args:
            connection: 连接配置

        Returns:
            模型信息列表
        """

    async def validate(self, connection: ConnectionConfig) -> ValidationResult:
        """
        检查连接与API密钥有效性，默认通过模型列表接口探测

        Returns:
            校验结果，任何异常都转换为 is_valid=False
        """
        if self.requires_api_key and not self.resolve_api_key(connection):
            return ValidationResult(is_valid=False, error="API key is not set")

        try:
            await self.list_models(connection)
            return ValidationResult(is_valid=True)
        except ProviderError as e:
            logger.warning(f"{self.provider_type.value} 连接校验失败: {e}")
            return ValidationResult(is_valid=False, error=str(e))

    def normalize_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        将统一参数转换为厂商参数名，默认OpenAI风格

        Args:
            params: 包含 temperature / max_output_tokens / top_p 的参数

        Returns:
            厂商格式参数（空值不输出）
        """
        normalized = {
            "temperature": params.get("temperature", 0.7),
            "max_tokens": params.get("max_output_tokens"),
            "top_p": params.get("top_p"),
        }
        return {k: v for k, v in normalized.items() if v is not None}

    # ------------------------------------------------------------------
    # HTTP 辅助
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        payload: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_retries: int = 0,
    ) -> dict[str, Any]:
        """
        发送请求并解析JSON，非2xx转换为 ProviderError

        max_retries 只对限流、5xx和网络错误生效。
        """
        attempt = 0
        while True:
            try:
                response = await self.client.request(
                    method,
                    url,
                    headers={"Content-Type": "application/json", **(headers or {})},
                    json=payload,
                    timeout=timeout or self.timeout,
                )
                if not response.is_success:
                    raise self.handle_error(response.status_code, response.text)
                return response.json()
            except httpx.HTTPError as e:
                error: ProviderError = to_network_error(e)
            except (ProviderRateLimitError, ProviderServerError) as e:
                error = e

            if attempt >= max_retries:
                raise error
            attempt += 1
            logger.debug(f"{self.provider_type.value} 请求重试 {attempt}/{max_retries}: {error}")
            await asyncio.sleep(min(2 ** (attempt - 1), 8))

    async def _iter_lines(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> AsyncGenerator[str, None]:
        """以流方式POST并逐行产出响应体"""
        try:
            async with self.client.stream(
                "POST",
                url,
                headers={"Content-Type": "application/json", **headers},
                json=payload,
                timeout=timeout or self.timeout,
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise self.handle_error(response.status_code, response.text)

                async for line in response.aiter_lines():
                    if line:
                        yield line
        except httpx.HTTPError as e:
            raise to_network_error(e) from e

    async def _iter_sse_json(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """解析SSE的 data: 行为JSON"""
        async for line in self._iter_lines(url, headers, payload, timeout):
            if not line.startswith("data:"):
                continue
            data = line[5:].strip()
            if data == "[DONE]":
                break
            try:
                yield json.loads(data)
            except json.JSONDecodeError:
                continue

    def handle_error(self, status_code: int, body: str) -> "ProviderError":
        """
        处理HTTP错误响应

        Args:
            status_code: HTTP状态码
            body: 响应体文本

        Returns:
            对应的异常（消息中带有状态码，供重试分类使用）
        """
        error_msg = extract_error_message(body)
        vendor = self.provider_type.value

        if status_code in (401, 403):
            return ProviderAuthError(f"[{vendor}] 认证失败 (HTTP {status_code}): {error_msg}", status_code)
        if status_code == 429:
            return ProviderRateLimitError(
                f"[{vendor}] 速率限制 (HTTP 429 rate limit): {error_msg}", status_code
            )
        if status_code == 503:
            return ProviderServerError(
                f"[{vendor}] 服务不可用 (HTTP 503 service unavailable): {error_msg}", status_code
            )
        if status_code >= 500:
            return ProviderServerError(f"[{vendor}] 服务器错误 (HTTP {status_code}): {error_msg}", status_code)
        if status_code == 400:
            return ProviderRequestError(f"[{vendor}] 请求错误 (HTTP 400): {error_msg}", status_code)
        return ProviderError(f"[{vendor}] 未知错误 (HTTP {status_code}): {error_msg}", status_code)


def extract_error_message(body: str) -> str:
    """从错误响应体中提取可读消息"""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return (body or "").strip()[:500]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if data.get("message"):
            return str(data["message"])
    return str(data)[:500]


def to_network_error(error: httpx.HTTPError) -> "ProviderNetworkError":
    """把httpx异常转换为网络错误，消息包含 network / timeout 关键字"""
    if isinstance(error, httpx.TimeoutException):
        return ProviderNetworkError(f"请求超时 (network timeout): {error}")
    if isinstance(error, httpx.ConnectError):
        return ProviderNetworkError(f"连接失败 (network connection refused): {error}")
    return ProviderNetworkError(f"网络请求失败 (network error): {error}")


# 自定义异常类
class ProviderError(Exception):
    """Provider基础异常"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """认证错误"""


class ProviderRateLimitError(ProviderError):
    """速率限制错误"""


class ProviderRequestError(ProviderError):
    """请求错误"""


class ProviderServerError(ProviderError):
    """服务器错误"""


class ProviderNetworkError(ProviderError):
    """网络或超时错误"""
