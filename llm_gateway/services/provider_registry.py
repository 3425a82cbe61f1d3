"""
Provider注册服务
Provider/模型配置的增删改查，带短TTL读缓存；负责连通性校验和模型列表同步
"""

import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from llm_gateway.database import session_scope
from llm_gateway.exceptions import (
    EncryptionException,
    ErrorCode,
    ModelNotFoundException,
    ProviderNotFoundException,
)
from llm_gateway.models import Model, Provider
from llm_gateway.providers import AdapterFactory, BaseAdapter, ConnectionConfig
from llm_gateway.providers.capabilities import get_default_models, get_static_config
from llm_gateway.types import (
    ModelConfig,
    ModelInput,
    ModelUpdate,
    ProviderConfig,
    ProviderInfo,
    ProviderInput,
    ProviderUpdate,
    SyncResult,
    ValidationResult,
)
from llm_gateway.utils.encryption import ApiKeyCipher
from llm_gateway.utils.logger import get_logger
from llm_gateway.utils.ttl_cache import TTLCache

logger = get_logger(__name__)


class ProviderRegistry:
    """Provider注册服务"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapter_factory: AdapterFactory,
        cipher: Optional[ApiKeyCipher] = None,
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            session_factory: 数据库会话工厂
            adapter_factory: 适配器查找表
            cipher: API密钥加解密器，未配置时无法保存或读取密钥
            cache_ttl: Provider读缓存有效期（秒）
            clock: 缓存计时函数
        """
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory
        self.cipher = cipher
        self.cache: TTLCache[ProviderInfo] = TTLCache(ttl=cache_ttl, clock=clock)

    # ------------------------------------------------------------------
    # 加解密
    # ------------------------------------------------------------------

    def _require_cipher(self) -> ApiKeyCipher:
        if self.cipher is None:
            raise EncryptionException(
                ErrorCode.ENCRYPTION_KEY_MISSING,
                "API key encryption secret is not configured",
            )
        return self.cipher

    def encrypt_api_key(self, api_key: str) -> str:
        return self._require_cipher().encrypt(api_key)

    def decrypt_api_key(self, api_key_encrypted: str) -> str:
        return self._require_cipher().decrypt(api_key_encrypted)

    def build_connection(self, provider: ProviderConfig) -> ConnectionConfig:
        """
        构建已解密的连接配置

        Raises:
            EncryptionException: 密钥无法解密
        """
        api_key = (
            self.decrypt_api_key(provider.api_key_encrypted) if provider.api_key_encrypted else None
        )
        return ConnectionConfig(
            provider_type=provider.provider_type,
            base_url=provider.base_url,
            api_key=api_key,
            auth_type=provider.auth_type,
            custom_auth_header=provider.custom_auth_header,
        )

    def get_adapter(self, provider_type: str) -> BaseAdapter:
        return self.adapter_factory.get_adapter(provider_type)

    # ------------------------------------------------------------------
    # 缓存
    # ------------------------------------------------------------------

    def invalidate_cache(self, provider_id: Optional[str] = None) -> None:
        """失效单个Provider的缓存，provider_id为空时全部清空"""
        self.cache.invalidate(provider_id)

    # ------------------------------------------------------------------
    # Provider CRUD
    # ------------------------------------------------------------------

    async def register(self, provider_input: ProviderInput) -> ProviderInfo:
        """
        注册Provider：加密密钥、保存记录并写入该类型的默认模型

        Returns:
            新建Provider的视图
        """
        static = get_static_config(provider_input.provider_type)
        api_key_encrypted = (
            self.encrypt_api_key(provider_input.api_key) if provider_input.api_key else None
        )

        async with session_scope(self.session_factory) as session:
            provider = Provider(
                name=provider_input.name,
                provider_type=provider_input.provider_type.value,
                base_url=provider_input.base_url,
                api_key_encrypted=api_key_encrypted,
                auth_type=provider_input.auth_type.value,
                custom_auth_header=provider_input.custom_auth_header,
                capabilities=list(provider_input.capabilities),
                cost_tier=(provider_input.cost_tier or static.cost_tier).value,
                quality_tier=(provider_input.quality_tier or static.quality_tier).value,
                is_enabled=provider_input.is_enabled,
            )
            session.add(provider)
            await session.flush()

            for template in get_default_models(provider_input.provider_type):
                session.add(Model(provider_id=provider.id, **template))

            provider_id = provider.id

        self.invalidate_cache(provider_id)
        logger.info(f"注册Provider: {provider_input.name} ({provider_input.provider_type.value})")

        return await self._require_info(provider_id)

    async def update(self, provider_id: str, provider_update: ProviderUpdate) -> ProviderInfo:
        """
        更新Provider，仅更新显式传入的字段；更换密钥会重置校验状态

        Raises:
            ProviderNotFoundException: Provider不存在
        """
        fields = provider_update.model_fields_set

        async with session_scope(self.session_factory) as session:
            provider = await session.get(Provider, provider_id)
            if provider is None:
                raise ProviderNotFoundException(provider_id)

            for name in ("base_url", "custom_auth_header"):
                if name in fields:
                    setattr(provider, name, getattr(provider_update, name))
            # name / is_enabled 不可为空，显式传入 null 时忽略
            for name in ("name", "is_enabled"):
                value = getattr(provider_update, name)
                if name in fields and value is not None:
                    setattr(provider, name, value)
            if "capabilities" in fields:
                provider.capabilities = list(provider_update.capabilities or [])
            for name in ("auth_type", "cost_tier", "quality_tier"):
                value = getattr(provider_update, name)
                if name in fields and value is not None:
                    setattr(provider, name, value.value)

            if "api_key" in fields:
                provider.api_key_encrypted = (
                    self.encrypt_api_key(provider_update.api_key) if provider_update.api_key else None
                )
                provider.is_validated = False
                provider.validated_at = None

        self.invalidate_cache(provider_id)

        return await self._require_info(provider_id)

    async def remove(self, provider_id: str) -> None:
        """删除Provider（级联删除其模型）"""
        async with session_scope(self.session_factory) as session:
            provider = await session.get(Provider, provider_id)
            if provider is None:
                raise ProviderNotFoundException(provider_id)
            await session.delete(provider)

        self.invalidate_cache(provider_id)
        logger.info(f"删除Provider: {provider_id}")

    async def get(self, provider_id: str) -> Optional[ProviderInfo]:
        """读取Provider视图（经过TTL缓存）"""
        cached = self.cache.get(provider_id)
        if cached is not None:
            return cached

        config = await self.get_provider_config(provider_id)
        if config is None:
            return None

        info = config.to_info()
        self.cache.set(provider_id, info)
        return info

    async def _require_info(self, provider_id: str) -> ProviderInfo:
        info = await self.get(provider_id)
        if info is None:
            raise ProviderNotFoundException(provider_id)
        return info

    async def list_providers(self, enabled_only: bool = False) -> list[ProviderInfo]:
        """列出Provider，同时填充单个Provider的缓存"""
        async with self.session_factory() as session:
            stmt = (
                select(Provider)
                .options(selectinload(Provider.models))
                .order_by(Provider.created_seq.asc())
            )
            if enabled_only:
                stmt = stmt.where(Provider.is_enabled.is_(True))
            result = await session.execute(stmt)
            configs = [ProviderConfig.model_validate(p) for p in result.scalars().all()]

        infos = []
        for config in configs:
            info = config.to_info()
            self.cache.set(config.id, info)
            infos.append(info)
        return infos

    async def get_provider_config(self, provider_id: str) -> Optional[ProviderConfig]:
        """读取包含密文的内部配置（不经过缓存）"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Provider)
                .where(Provider.id == provider_id)
                .options(selectinload(Provider.models))
            )
            provider = result.scalar_one_or_none()
            return ProviderConfig.model_validate(provider) if provider else None

    async def list_enabled_provider_types(self) -> list[str]:
        """已启用Provider的类型（去重，保持注册顺序）"""
        types: list[str] = []
        for info in await self.list_providers(enabled_only=True):
            if info.provider_type.value not in types:
                types.append(info.provider_type.value)
        return types

    # ------------------------------------------------------------------
    # Model CRUD
    # ------------------------------------------------------------------

    async def add_model(self, model_input: ModelInput) -> ModelConfig:
        async with session_scope(self.session_factory) as session:
            provider = await session.get(Provider, model_input.provider_id)
            if provider is None:
                raise ProviderNotFoundException(model_input.provider_id)

            if model_input.is_default:
                await self._clear_default(session, model_input.provider_id)

            model = Model(
                provider_id=model_input.provider_id,
                model_id=model_input.model_id,
                display_name=model_input.display_name or model_input.model_id,
                context_window=model_input.context_window,
                supports_vision=model_input.supports_vision,
                supports_tools=model_input.supports_tools,
                default_params=model_input.default_params,
                is_default=model_input.is_default,
            )
            session.add(model)
            await session.flush()
            config = ModelConfig.model_validate(model)

        self.invalidate_cache(model_input.provider_id)
        return config

    async def update_model(self, model_id: str, model_update: ModelUpdate) -> ModelConfig:
        fields = model_update.model_fields_set

        async with session_scope(self.session_factory) as session:
            model = await session.get(Model, model_id)
            if model is None:
                raise ModelNotFoundException(model_id)

            if model_update.is_default:
                await self._clear_default(session, model.provider_id)

            for name in fields:
                value = getattr(model_update, name)
                if value is None and name in ("supports_vision", "supports_tools", "is_default", "display_name"):
                    continue
                setattr(model, name, value)

            await session.flush()
            config = ModelConfig.model_validate(model)

        self.invalidate_cache(config.provider_id)
        return config

    async def remove_model(self, model_id: str) -> None:
        async with session_scope(self.session_factory) as session:
            model = await session.get(Model, model_id)
            if model is None:
                raise ModelNotFoundException(model_id)
            provider_id = model.provider_id
            await session.delete(model)

        self.invalidate_cache(provider_id)

    @staticmethod
    async def _clear_default(session: AsyncSession, provider_id: str) -> None:
        """同一Provider最多一个默认模型"""
        await session.execute(
            update(Model).where(Model.provider_id == provider_id).values(is_default=False)
        )

    # ------------------------------------------------------------------
    # 校验与同步
    # ------------------------------------------------------------------

    async def validate(self, provider_id: str) -> ValidationResult:
        """
        调用适配器校验连通性，保存校验结果

        任何异常都会转换为失败的校验结果；无论结果如何都会失效缓存。
        """
        provider = await self.get_provider_config(provider_id)
        if provider is None:
            return ValidationResult(is_valid=False, error="provider not found")

        try:
            adapter = self.get_adapter(provider.provider_type)
            result = await adapter.validate(self.build_connection(provider))
        except Exception as e:
            logger.error(f"Provider校验异常 {provider.name}: {e}", exc_info=True)
            result = ValidationResult(is_valid=False, error=str(e))

        try:
            async with session_scope(self.session_factory) as session:
                await session.execute(
                    update(Provider)
                    .where(Provider.id == provider_id)
                    .values(
                        is_validated=result.is_valid,
                        validated_at=datetime.now() if result.is_valid else None,
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"保存校验结果失败 {provider_id}: {e}")
        finally:
            self.invalidate_cache(provider_id)

        logger.info(
            f"Provider校验完成: {provider.name} valid={result.is_valid}"
            + (f" ({result.error})" if result.error else "")
        )
        return result

    async def sync_models(self, provider_id: str) -> SyncResult:
        """
        与厂商模型列表同步：新增未记录的模型；厂商返回非空列表时，
        删除厂商已不再提供且未标记为默认的模型
        """
        provider = await self.get_provider_config(provider_id)
        if provider is None:
            return SyncResult(success=False, error="provider not found")

        try:
            adapter = self.get_adapter(provider.provider_type)
            remote_models = await adapter.list_models(self.build_connection(provider))
        except Exception as e:
            logger.error(f"获取模型列表失败 {provider.name}: {e}")
            self.invalidate_cache(provider_id)
            return SyncResult(success=False, models=provider.models, error=str(e))

        added: list[str] = []
        removed: list[str] = []

        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(select(Model).where(Model.provider_id == provider_id))
                existing = list(result.scalars().all())
                known_ids = {m.model_id for m in existing}

                for info in remote_models:
                    if info.model_id in known_ids:
                        continue
                    known_ids.add(info.model_id)
                    session.add(
                        Model(
                            provider_id=provider_id,
                            model_id=info.model_id,
                            display_name=info.display_name or info.model_id,
                            context_window=info.context_window,
                            supports_vision=info.supports_vision,
                            supports_tools=info.supports_tools,
                            is_default=False,
                        )
                    )
                    added.append(info.model_id)

                # 厂商返回空列表时不删除任何模型
                if remote_models:
                    remote_ids = {info.model_id for info in remote_models}
                    for model in existing:
                        if model.model_id not in remote_ids and not model.is_default:
                            await session.delete(model)
                            removed.append(model.model_id)
        except SQLAlchemyError as e:
            logger.error(f"保存同步结果失败 {provider.name}: {e}")
            return SyncResult(success=False, models=provider.models, error=str(e))
        finally:
            self.invalidate_cache(provider_id)

        refreshed = await self.get_provider_config(provider_id)
        models = refreshed.models if refreshed else []
        logger.info(f"模型同步完成: {provider.name} 新增 {len(added)} 个，删除 {len(removed)} 个")
        return SyncResult(success=True, models=models, added=added, removed=removed)
