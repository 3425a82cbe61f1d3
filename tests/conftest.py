"""测试公共夹具"""

import sys
from pathlib import Path
from typing import Any, Optional, Union

import pytest

# 添加项目根目录到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from llm_gateway.database import create_engine_from_url, create_session_factory, init_db, session_scope
from llm_gateway.models import UsageRecord
from llm_gateway.providers import AdapterFactory, BaseAdapter, GenerateRequest, GenerateResponse
from llm_gateway.routing import FeatureResolver, UniversalRouter
from llm_gateway.services import BudgetService, ProviderRegistry, UsageAggregationService, UsageTracker
from llm_gateway.types import (
    FeatureMappingInput,
    MatchMode,
    ModelInfo,
    ProviderInput,
    ProviderType,
    TokenUsage,
    ValidationResult,
)
from llm_gateway.utils.encryption import ApiKeyCipher

TEST_SECRET = "0123456789abcdef" * 4

Outcome = Union[str, Exception]


class FakeAdapter(BaseAdapter):
    """按预设结果依次返回文本或抛出异常的适配器"""

    def __init__(self, provider_type: ProviderType, outcomes: Optional[list[Outcome]] = None, **kwargs: Any):
        super().__init__()
        self.provider_type = provider_type
        self.requires_api_key = provider_type != ProviderType.OLLAMA
        self.outcomes: list[Outcome] = list(outcomes or [])
        self.requests: list[GenerateRequest] = []
        self.remote_models: Union[list[ModelInfo], Exception] = []
        self.validation: Union[ValidationResult, Exception] = ValidationResult(is_valid=True)

    def _next_outcome(self, default: str) -> str:
        outcome = self.outcomes.pop(0) if self.outcomes else default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        self.requests.append(request)
        text = self._next_outcome(f"{self.provider_type.value} answer")
        return GenerateResponse(
            text=text, usage=TokenUsage(input_tokens=100, output_tokens=200), model=request.model.model_id
        )

    async def _stream_chunks(self, request, usage):
        self.requests.append(request)
        text = self._next_outcome("hello streaming world")
        for word in text.split(" "):
            yield word + " "
        usage.input_tokens = 5
        usage.output_tokens = 7

    async def list_models(self, connection):
        if isinstance(self.remote_models, Exception):
            raise self.remote_models
        return list(self.remote_models)

    async def validate(self, connection):
        if isinstance(self.validation, Exception):
            raise self.validation
        return self.validation


@pytest.fixture
async def engine():
    engine = create_engine_from_url("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def cipher():
    return ApiKeyCipher(TEST_SECRET)


@pytest.fixture
def fake_adapters():
    """每种内置类型一个假适配器"""
    return {
        provider_type: FakeAdapter(provider_type)
        for provider_type in ProviderType
        if provider_type != ProviderType.CUSTOM
    }


@pytest.fixture
def adapter_factory(fake_adapters):
    factory = AdapterFactory()
    for provider_type, adapter in fake_adapters.items():
        factory.register_adapter(provider_type, adapter)
    return factory


@pytest.fixture
def registry(session_factory, adapter_factory, cipher):
    return ProviderRegistry(session_factory, adapter_factory, cipher)


@pytest.fixture
def resolver(session_factory):
    return FeatureResolver(session_factory)


@pytest.fixture
def usage_tracker(session_factory):
    return UsageTracker(session_factory)


@pytest.fixture
def aggregation(session_factory):
    return UsageAggregationService(session_factory)


@pytest.fixture
def budget_service(session_factory, usage_tracker):
    return BudgetService(session_factory, usage_tracker)


@pytest.fixture
def router(resolver, registry, usage_tracker):
    return UniversalRouter(resolver, registry, usage_tracker)


async def register_provider(
    registry: ProviderRegistry,
    provider_type: ProviderType,
    name: Optional[str] = None,
    api_key: Optional[str] = "sk-test-key-123456",
    is_enabled: bool = True,
    **kwargs: Any,
):
    """注册并启用一个Provider"""
    return await registry.register(
        ProviderInput(
            name=name or provider_type.value,
            provider_type=provider_type,
            api_key=api_key,
            is_enabled=is_enabled,
            **kwargs,
        )
    )


async def map_provider(resolver: FeatureResolver, feature_type: str, provider_info, priority: int, **kwargs: Any):
    """把功能绑定到Provider的默认模型"""
    model = next(m for m in provider_info.models if m.is_default)
    return await resolver.create_or_update_mapping(
        FeatureMappingInput(
            feature_type=feature_type,
            match_mode=MatchMode.SPECIFIC_MODEL,
            specific_model_id=model.id,
            priority=priority,
            **kwargs,
        )
    )


async def add_record(session_factory, created_at, provider="openai", feature_type="general_chat", **kwargs):
    """直接写入指定时间的用量记录"""
    values = {
        "model_id": "gpt-4o",
        "input_tokens": 0,
        "output_tokens": 0,
        "cost_usd": 0.0,
        "response_time_ms": 100,
        "success": True,
    }
    values.update(kwargs)
    async with session_scope(session_factory) as session:
        session.add(UsageRecord(provider=provider, feature_type=feature_type, created_at=created_at, **values))
