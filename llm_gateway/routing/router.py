"""
统一路由器
按候选顺序逐个尝试生成，可重试错误与拒答时切换到下一个候选，并记录每次尝试的用量
"""

import dataclasses
import time
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from llm_gateway.config_models import RoutingConfig
from llm_gateway.exceptions import EncryptionException, FailoverError, ProviderAttemptError
from llm_gateway.providers import ConnectionConfig, GenerateRequest, GenerateResponse, ModelHandle
from llm_gateway.services.budget_service import BudgetService
from llm_gateway.services.provider_registry import ProviderRegistry
from llm_gateway.services.usage_tracker import UsageTracker
from llm_gateway.types import (
    AuthType,
    Candidate,
    FallbackMode,
    ModelConfig,
    ProviderConfig,
    ProviderType,
    ResolutionRequirements,
    TokenUsage,
)
from llm_gateway.utils.logger import get_logger

from .error_classifier import is_retryable_error
from .feature_resolver import FeatureResolver
from .refusal import is_refusal

logger = get_logger(__name__)

# 无需密钥的本地Provider
KEYLESS_PROVIDERS = frozenset({ProviderType.OLLAMA})

SPECIFIC_PROVIDER_MAX_RETRIES = 2


class ReadinessStatus(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass
class Readiness:
    """候选是否可以发起请求"""

    status: ReadinessStatus
    reason: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)

    @property
    def is_ready(self) -> bool:
        return self.status == ReadinessStatus.READY


@dataclass
class GenerateOptions:
    """文本生成请求参数，provider_id 为空时按功能类型路由"""

    feature_type: str
    prompt: Optional[str] = None
    messages: Optional[list[dict[str, Any]]] = None
    system: Optional[str] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    caller_id: Optional[str] = None
    provider_id: Optional[str] = None
    requirements: Optional[ResolutionRequirements] = None


@dataclass
class VisionGenerateOptions:
    """图像分析请求参数"""

    feature_type: str
    prompt: str
    image_base64: str
    mime_type: str = "image/jpeg"
    system: Optional[str] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    caller_id: Optional[str] = None
    provider_id: Optional[str] = None


@dataclass
class GenerateResult:
    text: str
    usage: TokenUsage
    provider: str
    model: str
    was_failover: bool = False
    failover_from: Optional[str] = None
    first_attempted: Optional[str] = None
    total_attempts: int = 1
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "usage": {
                "input_tokens": self.usage.input_tokens,
                "output_tokens": self.usage.output_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "provider": self.provider,
            "model": self.model,
            "was_failover": self.was_failover,
            "failover_from": self.failover_from,
            "first_attempted": self.first_attempted,
            "total_attempts": self.total_attempts,
            "duration_ms": self.duration_ms,
        }


@dataclass
class StreamResult:
    """流式结果，chunks 读取完毕后 usage 被填充并记录用量"""

    chunks: AsyncIterator[str]
    provider: str
    model: str
    usage: TokenUsage
    was_failover: bool = False
    failover_from: Optional[str] = None


RequestBuilder = Callable[[ModelHandle], GenerateRequest]


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class UniversalRouter:
    """统一路由器"""

    def __init__(
        self,
        resolver: FeatureResolver,
        registry: ProviderRegistry,
        usage_tracker: UsageTracker,
        config: Optional[RoutingConfig] = None,
        budget_service: Optional[BudgetService] = None,
    ):
        self.resolver = resolver
        self.registry = registry
        self.usage_tracker = usage_tracker
        self.config = config or RoutingConfig()
        # 为空时不做预算限流
        self.budget_service = budget_service

    # ------------------------------------------------------------------
    # 就绪检查
    # ------------------------------------------------------------------

    def check_readiness(self, candidate: Candidate) -> Readiness:
        """
        检查候选的Provider是否可用

        Returns:
            READY（附带解密后的密钥）、NOT_READY（跳过）或 FAILED（密钥无法解密，跳过）
        """
        provider = candidate.provider

        if not self.registry.adapter_factory.has_adapter(provider.provider_type):
            return Readiness(ReadinessStatus.NOT_READY, f"no adapter for {provider.provider_type.value}")

        if provider.provider_type in KEYLESS_PROVIDERS:
            return Readiness(ReadinessStatus.READY)

        if not provider.is_enabled:
            return Readiness(ReadinessStatus.NOT_READY, "provider disabled")

        if not provider.api_key_encrypted:
            if provider.auth_type == AuthType.NONE:
                return Readiness(ReadinessStatus.READY)
            return Readiness(ReadinessStatus.NOT_READY, "API key is not set")

        try:
            api_key = self.registry.decrypt_api_key(provider.api_key_encrypted)
        except EncryptionException as e:
            return Readiness(ReadinessStatus.FAILED, str(e))

        return Readiness(ReadinessStatus.READY, api_key=api_key)

    def _log_skip(self, candidate: Candidate, readiness: Readiness, feature_type: str) -> None:
        name = candidate.provider.provider_type.value
        if readiness.status == ReadinessStatus.FAILED:
            logger.error(f"Provider {name} 就绪检查失败，跳过 (feature={feature_type}): {readiness.reason}")
        else:
            logger.warning(f"Provider {name} 未就绪，跳过 (feature={feature_type}): {readiness.reason}")

    # ------------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------------

    async def generate(self, options: GenerateOptions) -> GenerateResult:
        """
        文本生成（带自动故障转移）

        Raises:
            FailoverError: 没有可用候选或所有候选都失败
        """
        candidates = await self._build_candidates(options.feature_type, options.provider_id, options.requirements)

        def build_request(handle: ModelHandle) -> GenerateRequest:
            return self._text_request(handle, options, max_retries=0)

        return await self._run_failover(options.feature_type, candidates, build_request, options.caller_id)

    async def generate_with_vision(self, options: VisionGenerateOptions) -> GenerateResult:
        """图像分析生成，跳过不支持视觉的模型"""
        candidates = await self._build_candidates(
            options.feature_type, options.provider_id, ResolutionRequirements(), needs_vision=True
        )
        return await self._run_failover(
            options.feature_type,
            candidates,
            self._vision_request_builder(options, max_retries=0),
            options.caller_id,
            require_vision=True,
        )

    async def generate_with_specific_provider(
        self, provider_type: Union[ProviderType, str], options: GenerateOptions
    ) -> GenerateResult:
        """
        直接使用指定类型的第一个已启用Provider生成，不做故障转移

        适配器内部允许少量重试。
        """
        candidate = await self._specific_candidate(provider_type, options.feature_type)

        def build_request(handle: ModelHandle) -> GenerateRequest:
            return self._text_request(handle, options, max_retries=SPECIFIC_PROVIDER_MAX_RETRIES)

        return await self._run_failover(options.feature_type, [candidate], build_request, options.caller_id)

    async def generate_vision_with_specific_provider(
        self, provider_type: Union[ProviderType, str], options: VisionGenerateOptions
    ) -> GenerateResult:
        """指定Provider类型的图像分析，只使用其支持视觉的模型"""
        candidate = await self._specific_candidate(provider_type, options.feature_type, needs_vision=True)
        return await self._run_failover(
            options.feature_type,
            [candidate],
            self._vision_request_builder(options, max_retries=SPECIFIC_PROVIDER_MAX_RETRIES),
            options.caller_id,
            require_vision=True,
        )

    async def generate_stream(self, options: GenerateOptions) -> StreamResult:
        """
        流式生成

        先读取第一个片段再确定候选，连接阶段的错误会切换到下一个候选；
        流结束时记录用量，中途出错记录失败。不做拒答检测。
        """
        feature_type = options.feature_type
        candidates = await self._build_candidates(feature_type, options.provider_id, options.requirements)

        errors: list[ProviderAttemptError] = []
        previous: Optional[str] = None

        for index, candidate in enumerate(candidates):
            provider, model = candidate.provider, candidate.model
            provider_type = provider.provider_type.value

            readiness = self.check_readiness(candidate)
            if not readiness.is_ready:
                self._log_skip(candidate, readiness, feature_type)
                continue

            failover_from = self._failover_source(candidates, index, previous)
            start = time.perf_counter()
            first_chunk: Optional[str] = None

            try:
                adapter = self.registry.get_adapter(provider.provider_type)
                handle = adapter.create_model(
                    model.model_id, self._connection(provider, readiness), model.default_params
                )
                response = await adapter.stream(self._text_request(handle, options, max_retries=0))
                iterator = response.chunks.__aiter__()
                try:
                    first_chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    first_chunk = None
            except Exception as e:
                message = _error_message(e)
                duration_ms = _elapsed_ms(start)
                logger.error(f"流式Provider {provider_type} 失败 (第{index + 1}个候选, feature={feature_type}): {message}")
                errors.append(ProviderAttemptError(provider_type, message, duration_ms=duration_ms, model=model.model_id))
                await self._safe_track_failure(
                    provider_type, model.model_id, feature_type, message, duration_ms, options.caller_id, failover_from
                )
                previous = provider_type
                if not is_retryable_error(e):
                    logger.warning(f"错误不可重试，停止故障转移: {message}")
                    break
                continue

            if failover_from:
                logger.info(f"流式故障转移成功: {failover_from} -> {provider_type} (feature={feature_type})")

            chunks = self._relay_stream(
                first_chunk, iterator, response.usage, candidate, feature_type, start, options.caller_id, failover_from
            )
            return StreamResult(
                chunks=chunks,
                provider=provider_type,
                model=model.model_id,
                usage=response.usage,
                was_failover=index > 0,
                failover_from=failover_from,
            )

        raise FailoverError(feature_type, errors, self.config.user_error_message)

    # ------------------------------------------------------------------
    # 故障转移循环
    # ------------------------------------------------------------------

    async def _run_failover(
        self,
        feature_type: str,
        candidates: list[Candidate],
        build_request: RequestBuilder,
        caller_id: Optional[str],
        require_vision: bool = False,
    ) -> GenerateResult:
        errors: list[ProviderAttemptError] = []
        previous: Optional[str] = None
        first_attempted: Optional[str] = None
        started = time.perf_counter()

        for index, candidate in enumerate(candidates):
            provider, model = candidate.provider, candidate.model
            provider_type = provider.provider_type.value

            if require_vision and not model.supports_vision:
                logger.warning(f"模型 {model.model_id} 不支持视觉，跳过 (feature={feature_type})")
                continue

            readiness = self.check_readiness(candidate)
            if not readiness.is_ready:
                self._log_skip(candidate, readiness, feature_type)
                continue

            failover_from = self._failover_source(candidates, index, previous)
            if failover_from:
                logger.warning(f"故障转移: {failover_from} -> {provider_type} (feature={feature_type})")
            first_attempted = first_attempted or provider_type

            start = time.perf_counter()
            try:
                adapter = self.registry.get_adapter(provider.provider_type)
                handle = adapter.create_model(
                    model.model_id, self._connection(provider, readiness), model.default_params
                )
                response: GenerateResponse = await adapter.generate(build_request(handle))
            except Exception as e:
                message = _error_message(e)
                duration_ms = _elapsed_ms(start)
                logger.error(
                    f"Provider {provider_type} 失败 (第{index + 1}个候选, feature={feature_type}): {message}"
                )
                errors.append(ProviderAttemptError(provider_type, message, duration_ms=duration_ms, model=model.model_id))
                await self._safe_track_failure(
                    provider_type, model.model_id, feature_type, message, duration_ms, caller_id, failover_from
                )
                previous = provider_type
                if not is_retryable_error(e):
                    logger.warning(f"错误不可重试，停止故障转移: {message}")
                    break
                continue

            duration_ms = _elapsed_ms(start)

            if is_refusal(response.text, self.config.refusal_max_length):
                message = f"Model {model.model_id} refused: {response.text.strip()[:100]}"
                logger.warning(f"模型 {model.model_id} 拒绝回答，尝试下一个Provider (feature={feature_type})")
                errors.append(ProviderAttemptError(provider_type, message, duration_ms=duration_ms, model=model.model_id))
                await self._safe_track_failure(
                    provider_type, model.model_id, feature_type, "refusal detected", duration_ms, caller_id, failover_from
                )
                previous = provider_type
                continue

            await self._safe_track_usage(
                provider_type, model.model_id, feature_type, response.usage, duration_ms, caller_id, failover_from
            )
            logger.info(
                f"生成成功: {provider_type}/{model.model_id} (第{index + 1}个候选, feature={feature_type}, "
                f"{duration_ms}ms)"
            )
            return GenerateResult(
                text=response.text,
                usage=response.usage,
                provider=provider_type,
                model=model.model_id,
                was_failover=index > 0,
                failover_from=failover_from,
                first_attempted=first_attempted,
                total_attempts=len(errors) + 1,
                duration_ms=_elapsed_ms(started),
            )

        if errors:
            logger.error(f"功能 '{feature_type}' 的所有Provider均失败 ({len(errors)} 次尝试)")
        else:
            logger.error(f"功能 '{feature_type}' 没有可用的Provider")
        raise FailoverError(feature_type, errors, self.config.user_error_message)

    async def _relay_stream(
        self,
        first_chunk: Optional[str],
        iterator: AsyncIterator[str],
        usage: TokenUsage,
        candidate: Candidate,
        feature_type: str,
        start: float,
        caller_id: Optional[str],
        failover_from: Optional[str],
    ) -> AsyncGenerator[str, None]:
        provider_type = candidate.provider.provider_type.value
        model_id = candidate.model.model_id
        try:
            if first_chunk is not None:
                yield first_chunk
            async for chunk in iterator:
                yield chunk
        except Exception as e:
            message = _error_message(e)
            logger.error(f"流式输出中断 {provider_type}/{model_id}: {message}")
            await self._safe_track_failure(
                provider_type, model_id, feature_type, message, _elapsed_ms(start), caller_id, failover_from
            )
            raise
        else:
            await self._safe_track_usage(
                provider_type, model_id, feature_type, usage, _elapsed_ms(start), caller_id, failover_from
            )

    # ------------------------------------------------------------------
    # 辅助方法
    # ------------------------------------------------------------------

    async def _build_candidates(
        self,
        feature_type: str,
        provider_id: Optional[str],
        requirements: Optional[ResolutionRequirements],
        needs_vision: bool = False,
    ) -> list[Candidate]:
        if provider_id:
            return await self._pinned_candidates(provider_id, needs_vision)

        requirements = requirements or ResolutionRequirements()
        if needs_vision:
            requirements = dataclasses.replace(requirements, needs_vision=True)
        candidates = await self.resolver.resolve_with_fallback(feature_type, requirements)
        return await self._apply_budget_gate(candidates)

    async def _apply_budget_gate(self, candidates: list[Candidate]) -> list[Candidate]:
        """所有周期预算都超支时只保留免费Provider的候选"""
        if self.budget_service is None or not candidates:
            return candidates

        provider_types = list(dict.fromkeys(c.provider.provider_type.value for c in candidates))
        allowed = set(await self.budget_service.filter_by_budget(provider_types))
        if len(allowed) == len(provider_types):
            return candidates
        return [c for c in candidates if c.provider.provider_type.value in allowed]

    @staticmethod
    def _pick_model(provider: ProviderConfig, needs_vision: bool, vision_only: bool = False) -> Optional[ModelConfig]:
        """视觉请求优先选择支持视觉的默认模型"""
        if needs_vision:
            vision_models = [m for m in provider.models if m.supports_vision]
            model = next((m for m in vision_models if m.is_default), None) or (
                vision_models[0] if vision_models else None
            )
            if model or vision_only:
                return model
        return provider.default_model()

    async def _pinned_candidates(self, provider_id: str, needs_vision: bool) -> list[Candidate]:
        """指定Provider时只有一个候选：默认模型（视觉请求优先选择支持视觉的模型）"""
        provider = await self.registry.get_provider_config(provider_id)
        if provider is None or not provider.is_enabled:
            logger.warning(f"指定的Provider {provider_id} 不存在或未启用")
            return []

        model = self._pick_model(provider, needs_vision)
        if model is None:
            logger.warning(f"Provider {provider.name} 没有配置任何模型")
            return []
        return [Candidate(provider, model, priority=0, fallback_mode=FallbackMode.FAIL)]

    async def _specific_candidate(
        self, provider_type: Union[ProviderType, str], feature_type: str, needs_vision: bool = False
    ) -> Candidate:
        """
        指定类型的第一个已启用Provider及其模型

        Raises:
            FailoverError: 未配置、未启用，或视觉请求时没有支持视觉的模型
        """
        provider_type = ProviderType(provider_type)
        for info in await self.registry.list_providers(enabled_only=True):
            if info.provider_type != provider_type:
                continue
            config = await self.registry.get_provider_config(info.id)
            model = self._pick_model(config, needs_vision, vision_only=True) if config else None
            if config and model:
                return Candidate(config, model, priority=0, fallback_mode=FallbackMode.FAIL)
            break

        logger.warning(f"Provider {provider_type.value} 未配置、未启用或没有可用模型")
        raise FailoverError(feature_type, [], self.config.user_error_message)

    @staticmethod
    def _failover_source(candidates: list[Candidate], index: int, previous: Optional[str]) -> Optional[str]:
        if index == 0:
            return None
        return previous or candidates[index - 1].provider.provider_type.value

    @staticmethod
    def _connection(provider: ProviderConfig, readiness: Readiness) -> ConnectionConfig:
        return ConnectionConfig(
            provider_type=provider.provider_type,
            base_url=provider.base_url,
            api_key=readiness.api_key,
            auth_type=provider.auth_type,
            custom_auth_header=provider.custom_auth_header,
        )

    def _text_request(self, handle: ModelHandle, options: GenerateOptions, max_retries: int) -> GenerateRequest:
        return GenerateRequest(
            model=handle,
            prompt=options.prompt,
            messages=options.messages,
            system=options.system,
            max_output_tokens=options.max_output_tokens,
            temperature=options.temperature,
            top_p=options.top_p,
            max_retries=max_retries,
            timeout=self.config.generation_timeout,
        )

    def _vision_request_builder(self, options: VisionGenerateOptions, max_retries: int) -> RequestBuilder:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image", "image": options.image_base64, "mime_type": options.mime_type},
                    {"type": "text", "text": options.prompt},
                ],
            }
        ]

        def build_request(handle: ModelHandle) -> GenerateRequest:
            return GenerateRequest(
                model=handle,
                messages=messages,
                system=options.system,
                max_output_tokens=options.max_output_tokens or self.config.vision_max_output_tokens,
                temperature=options.temperature,
                top_p=options.top_p,
                max_retries=max_retries,
                timeout=self.config.generation_timeout,
            )

        return build_request

    async def _safe_track_usage(
        self,
        provider_type: str,
        model_id: str,
        feature_type: str,
        usage: TokenUsage,
        duration_ms: int,
        caller_id: Optional[str],
        failover_from: Optional[str],
    ) -> None:
        """用量记录失败只记日志，不影响生成结果"""
        try:
            await self.usage_tracker.track_usage(
                provider_type,
                model_id,
                feature_type,
                usage,
                duration_ms,
                caller_id=caller_id,
                failover_from=failover_from,
            )
        except Exception as e:
            logger.error(f"用量记录失败 {provider_type}/{model_id}: {e}")

    async def _safe_track_failure(
        self,
        provider_type: str,
        model_id: str,
        feature_type: str,
        error_message: str,
        duration_ms: int,
        caller_id: Optional[str],
        failover_from: Optional[str],
    ) -> None:
        try:
            await self.usage_tracker.track_failure(
                provider_type,
                model_id,
                feature_type,
                error_message,
                duration_ms,
                caller_id=caller_id,
                failover_from=failover_from,
            )
        except Exception as e:
            logger.error(f"失败记录写入失败 {provider_type}/{model_id}: {e}")
