"""
网关核心类型定义
枚举、Provider/模型配置视图、输入模型与路由候选
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderType(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OLLAMA = "ollama"
    DEEPSEEK = "deepseek"
    MISTRAL = "mistral"
    COHERE = "cohere"
    XAI = "xai"
    ZHIPU = "zhipu"
    MOONSHOT = "moonshot"
    OPENROUTER = "openrouter"
    CUSTOM = "custom"


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"
    CUSTOM_HEADER = "custom_header"


class CostTier(str, Enum):
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QualityTier(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    PREMIUM = "premium"


class MatchMode(str, Enum):
    AUTO_TAG = "auto_tag"
    SPECIFIC_MODEL = "specific_model"


class FallbackMode(str, Enum):
    NEXT_PRIORITY = "next_priority"
    ANY_AVAILABLE = "any_available"
    FAIL = "fail"


class BudgetPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ---------------------------------------------------------------------------
# 配置视图（从ORM记录读取）
# ---------------------------------------------------------------------------


class ModelConfig(BaseModel):
    """Provider下的单个模型配置"""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    provider_id: str
    model_id: str
    display_name: str
    context_window: Optional[int] = None
    supports_vision: bool = False
    supports_tools: bool = False
    default_params: Optional[dict[str, Any]] = None
    is_default: bool = False


class ProviderInfo(BaseModel):
    """对外暴露的Provider视图，不包含密文"""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    name: str
    provider_type: ProviderType
    base_url: Optional[str] = None
    auth_type: AuthType = AuthType.BEARER
    custom_auth_header: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    cost_tier: CostTier = CostTier.MEDIUM
    quality_tier: QualityTier = QualityTier.BALANCED
    is_enabled: bool = False
    is_validated: bool = False
    validated_at: Optional[datetime] = None
    has_api_key: bool = False
    models: list[ModelConfig] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    """内部使用的Provider配置，携带加密后的API密钥"""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    name: str
    provider_type: ProviderType
    base_url: Optional[str] = None
    api_key_encrypted: Optional[str] = None
    auth_type: AuthType = AuthType.BEARER
    custom_auth_header: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    cost_tier: CostTier = CostTier.MEDIUM
    quality_tier: QualityTier = QualityTier.BALANCED
    is_enabled: bool = False
    is_validated: bool = False
    validated_at: Optional[datetime] = None
    models: list[ModelConfig] = Field(default_factory=list)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key_encrypted)

    def default_model(self) -> Optional[ModelConfig]:
        """默认模型，未标记时返回第一个模型"""
        for model in self.models:
            if model.is_default:
                return model
        return self.models[0] if self.models else None

    def to_info(self) -> ProviderInfo:
        data = self.model_dump(exclude={"api_key_encrypted"})
        data["has_api_key"] = self.has_api_key
        return ProviderInfo.model_validate(data)


# ---------------------------------------------------------------------------
# 输入模型
# ---------------------------------------------------------------------------


class ProviderInput(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    name: str
    provider_type: ProviderType
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    auth_type: AuthType = AuthType.BEARER
    custom_auth_header: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    cost_tier: Optional[CostTier] = None
    quality_tier: Optional[QualityTier] = None
    is_enabled: bool = False


class ProviderUpdate(BaseModel):
    """仅显式传入的字段会被更新（见 model_fields_set）"""

    model_config = ConfigDict(protected_namespaces=())

    name: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    auth_type: Optional[AuthType] = None
    custom_auth_header: Optional[str] = None
    capabilities: Optional[list[str]] = None
    cost_tier: Optional[CostTier] = None
    quality_tier: Optional[QualityTier] = None
    is_enabled: Optional[bool] = None


class ModelInput(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider_id: str
    model_id: str
    display_name: Optional[str] = None
    context_window: Optional[int] = None
    supports_vision: bool = False
    supports_tools: bool = False
    default_params: Optional[dict[str, Any]] = None
    is_default: bool = False


class ModelUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    display_name: Optional[str] = None
    context_window: Optional[int] = None
    supports_vision: Optional[bool] = None
    supports_tools: Optional[bool] = None
    default_params: Optional[dict[str, Any]] = None
    is_default: Optional[bool] = None


class FeatureMappingInput(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    feature_type: str
    match_mode: MatchMode
    required_tags: list[str] = Field(default_factory=list)
    excluded_tags: list[str] = Field(default_factory=list)
    specific_model_id: Optional[str] = None
    priority: int = 1
    fallback_mode: FallbackMode = FallbackMode.NEXT_PRIORITY


class FeatureMappingConfig(FeatureMappingInput):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str


class BudgetInput(BaseModel):
    period: BudgetPeriod
    budget_usd: float = Field(ge=0)
    alert_at_80: bool = True
    alert_at_100: bool = True


class BudgetConfigView(BudgetInput):
    model_config = ConfigDict(from_attributes=True)

    id: str
    last_alerted_at: Optional[datetime] = None
    last_alert_threshold: Optional[int] = None


# ---------------------------------------------------------------------------
# 路由与结果
# ---------------------------------------------------------------------------


@dataclass
class ResolutionRequirements:
    """功能解析时的附加筛选条件"""

    needs_vision: bool = False
    needs_tools: bool = False
    preferred_cost: Optional[CostTier] = None
    preferred_quality: Optional[QualityTier] = None
    min_context_window: Optional[int] = None


@dataclass
class Candidate:
    """解析得到的 (Provider, Model) 候选"""

    provider: ProviderConfig
    model: ModelConfig
    priority: int
    fallback_mode: FallbackMode

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider.id, self.model.id)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None
    details: Optional[dict[str, Any]] = None


@dataclass
class ModelInfo:
    """Provider接口返回的模型信息"""

    model_id: str
    display_name: str
    context_window: Optional[int] = None
    supports_vision: bool = False
    supports_tools: bool = False


@dataclass
class SyncResult:
    success: bool
    models: list[ModelConfig] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    error: Optional[str] = None
