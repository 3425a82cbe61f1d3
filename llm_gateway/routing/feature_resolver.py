"""
功能解析器
根据功能映射规则，把逻辑功能名解析为按优先级排序、去重后的 (Provider, Model) 候选列表
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from llm_gateway.database import session_scope
from llm_gateway.models import FeatureMapping, Model, Provider
from llm_gateway.types import (
    Candidate,
    CostTier,
    FallbackMode,
    FeatureMappingConfig,
    FeatureMappingInput,
    MatchMode,
    ModelConfig,
    ProviderConfig,
    QualityTier,
    ResolutionRequirements,
)
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)

FREE_MODEL_MARKER = ":free"

QUALITY_TAGS = {
    "fast": QualityTier.FAST,
    "balanced": QualityTier.BALANCED,
    "premium": QualityTier.PREMIUM,
}
COST_TAGS = {
    "cheap": (CostTier.LOW, CostTier.FREE),
    "low": (CostTier.LOW, CostTier.FREE),
    "medium": (CostTier.MEDIUM,),
    "expensive": (CostTier.HIGH,),
    "high": (CostTier.HIGH,),
}


def tag_matches(tag: str, provider: ProviderConfig, model: ModelConfig) -> bool:
    """判断 (provider, model) 是否满足某个标签"""
    if tag == "vision":
        return model.supports_vision
    if tag == "tools":
        return model.supports_tools
    if tag in QUALITY_TAGS:
        return provider.quality_tier == QUALITY_TAGS[tag]
    if tag in COST_TAGS:
        return provider.cost_tier in COST_TAGS[tag]
    return tag in provider.capabilities


def meets_requirements(
    provider: ProviderConfig, model: ModelConfig, requirements: ResolutionRequirements
) -> bool:
    """附加的标量筛选条件，与规则标签取交集"""
    if requirements.needs_vision and not model.supports_vision:
        return False
    if requirements.needs_tools and not model.supports_tools:
        return False
    if requirements.preferred_cost and provider.cost_tier != requirements.preferred_cost:
        return False
    if requirements.preferred_quality and provider.quality_tier != requirements.preferred_quality:
        return False
    # 上下文窗口未知的模型不过滤
    if (
        requirements.min_context_window
        and model.context_window
        and model.context_window < requirements.min_context_window
    ):
        return False
    return True


def candidate_sort_key(candidate: Candidate) -> tuple[int, int]:
    """免费模型排在最后，其余按上下文窗口从大到小"""
    is_free = FREE_MODEL_MARKER in candidate.model.model_id
    return (1 if is_free else 0, -(candidate.model.context_window or 0))


def dedupe_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """按 (provider id, model id) 去重，保留第一次出现的位置"""
    seen: set[tuple[str, str]] = set()
    unique = []
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        unique.append(candidate)
    return unique


class FeatureResolver:
    """功能解析器"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def resolve(
        self, feature_type: str, requirements: Optional[ResolutionRequirements] = None
    ) -> Optional[Candidate]:
        """返回最优候选，没有候选时返回 None"""
        candidates = await self.resolve_with_fallback(feature_type, requirements)
        return candidates[0] if candidates else None

    async def resolve_with_fallback(
        self, feature_type: str, requirements: Optional[ResolutionRequirements] = None
    ) -> list[Candidate]:
        """
        按规则优先级解析出完整的候选列表

        Args:
            feature_type: 功能类型，未知功能等同于没有任何规则
            requirements: 附加筛选条件（仅作用于 auto_tag 规则）

        Returns:
            有序且去重的候选列表，永不抛出"无候选"异常
        """
        requirements = requirements or ResolutionRequirements()

        async with self.session_factory() as session:
            mappings = await self._load_mappings(session, feature_type)
            if not mappings:
                return []

            # 优先级降序，Python排序稳定，同优先级保持查询顺序
            mappings.sort(key=lambda m: m.priority, reverse=True)

            enabled_providers: Optional[list[ProviderConfig]] = None
            results: list[Candidate] = []

            for mapping in mappings:
                fallback_mode = FallbackMode(mapping.fallback_mode)

                if mapping.match_mode == MatchMode.AUTO_TAG.value:
                    if enabled_providers is None:
                        enabled_providers = await self._load_enabled_providers(session)
                    results.extend(
                        self._resolve_by_tags(mapping, fallback_mode, enabled_providers, requirements)
                    )
                elif mapping.match_mode == MatchMode.SPECIFIC_MODEL.value and mapping.specific_model_id:
                    candidate = await self._resolve_specific_model(session, mapping, fallback_mode)
                    if candidate is not None:
                        results.append(candidate)

                # fail 模式在此规则处停止，不再评估更低优先级的规则
                if fallback_mode == FallbackMode.FAIL:
                    break

        candidates = dedupe_candidates(results)
        logger.debug(f"功能 '{feature_type}' 解析出 {len(candidates)} 个候选")
        return candidates

    # ------------------------------------------------------------------
    # 映射规则管理
    # ------------------------------------------------------------------

    async def get_mappings(self, feature_type: Optional[str] = None) -> list[FeatureMappingConfig]:
        """列出映射规则，按功能名升序、优先级降序"""
        async with self.session_factory() as session:
            stmt = select(FeatureMapping).order_by(
                FeatureMapping.feature_type.asc(), FeatureMapping.priority.desc()
            )
            if feature_type:
                stmt = stmt.where(FeatureMapping.feature_type == feature_type)
            result = await session.execute(stmt)
            return [FeatureMappingConfig.model_validate(m) for m in result.scalars().all()]

    async def create_or_update_mapping(self, mapping_input: FeatureMappingInput) -> FeatureMappingConfig:
        """以 (功能, 优先级) 为键新增或更新规则"""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(FeatureMapping).where(
                    FeatureMapping.feature_type == mapping_input.feature_type,
                    FeatureMapping.priority == mapping_input.priority,
                )
            )
            mapping = result.scalar_one_or_none()
            if mapping is None:
                mapping = FeatureMapping(
                    feature_type=mapping_input.feature_type, priority=mapping_input.priority
                )
                session.add(mapping)

            mapping.match_mode = mapping_input.match_mode.value
            mapping.required_tags = list(mapping_input.required_tags)
            mapping.excluded_tags = list(mapping_input.excluded_tags)
            mapping.specific_model_id = mapping_input.specific_model_id or None
            mapping.fallback_mode = mapping_input.fallback_mode.value

            await session.flush()
            logger.info(
                f"保存功能映射: {mapping.feature_type} (priority={mapping.priority}, mode={mapping.match_mode})"
            )
            return FeatureMappingConfig.model_validate(mapping)

    async def delete_mapping(self, mapping_id: str) -> bool:
        """删除规则，返回是否存在并已删除"""
        async with session_scope(self.session_factory) as session:
            mapping = await session.get(FeatureMapping, mapping_id)
            if mapping is None:
                return False
            await session.delete(mapping)
            return True

    # ------------------------------------------------------------------
    # 内部方法
    # ------------------------------------------------------------------

    @staticmethod
    async def _load_mappings(session: AsyncSession, feature_type: str) -> list[FeatureMapping]:
        result = await session.execute(
            select(FeatureMapping)
            .where(FeatureMapping.feature_type == feature_type)
            .order_by(FeatureMapping.priority.desc(), FeatureMapping.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def _load_enabled_providers(session: AsyncSession) -> list[ProviderConfig]:
        result = await session.execute(
            select(Provider)
            .where(Provider.is_enabled.is_(True))
            .options(selectinload(Provider.models))
            .order_by(Provider.created_seq.asc())
        )
        return [ProviderConfig.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    def _resolve_by_tags(
        mapping: FeatureMapping,
        fallback_mode: FallbackMode,
        providers: list[ProviderConfig],
        requirements: ResolutionRequirements,
    ) -> list[Candidate]:
        required_tags = mapping.required_tags or []
        excluded_tags = mapping.excluded_tags or []
        candidates = []

        for provider in providers:
            for model in provider.models:
                if not all(tag_matches(tag, provider, model) for tag in required_tags):
                    continue
                if any(tag_matches(tag, provider, model) for tag in excluded_tags):
                    continue
                if not meets_requirements(provider, model, requirements):
                    continue
                candidates.append(Candidate(provider, model, mapping.priority, fallback_mode))

        candidates.sort(key=candidate_sort_key)
        return candidates

    @staticmethod
    async def _resolve_specific_model(
        session: AsyncSession, mapping: FeatureMapping, fallback_mode: FallbackMode
    ) -> Optional[Candidate]:
        result = await session.execute(
            select(Model)
            .where(Model.id == mapping.specific_model_id)
            .options(selectinload(Model.provider).selectinload(Provider.models))
        )
        model = result.scalar_one_or_none()
        if model is None:
            logger.warning(f"功能映射引用的模型不存在: {mapping.specific_model_id}")
            return None
        if not model.provider.is_enabled:
            return None

        provider = ProviderConfig.model_validate(model.provider)
        return Candidate(provider, ModelConfig.model_validate(model), mapping.priority, fallback_mode)
