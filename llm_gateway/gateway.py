"""
网关装配
根据 GatewayConfig 构建并连接全部组件（显式依赖注入，没有全局单例）
"""

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from llm_gateway.config_models import GatewayConfig
from llm_gateway.database import close_db, create_engine_from_url, create_session_factory, init_db
from llm_gateway.exceptions import EncryptionException
from llm_gateway.providers import AdapterFactory
from llm_gateway.routing import FeatureResolver, UniversalRouter
from llm_gateway.scheduler import TaskScheduler, register_maintenance_tasks
from llm_gateway.services import (
    BudgetService,
    ProviderRegistry,
    UsageAggregationService,
    UsageTracker,
)
from llm_gateway.utils.encryption import ApiKeyCipher
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)


class LLMGateway:
    """持有全部组件的网关实例"""

    def __init__(
        self,
        config: GatewayConfig,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        adapter_factory: AdapterFactory,
        cipher: Optional[ApiKeyCipher] = None,
        scheduler: Optional[TaskScheduler] = None,
    ):
        self.config = config
        self.engine = engine
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory
        self.cipher = cipher

        self.registry = ProviderRegistry(
            session_factory,
            adapter_factory,
            cipher,
            cache_ttl=config.cache.provider_ttl_seconds,
        )
        self.resolver = FeatureResolver(session_factory)
        self.usage_tracker = UsageTracker(session_factory, week_start_day=config.budget.week_start_day)
        self.aggregation = UsageAggregationService(session_factory)
        self.budget = BudgetService(session_factory, self.usage_tracker)
        self.router = UniversalRouter(
            self.resolver, self.registry, self.usage_tracker, config.routing, budget_service=self.budget
        )

        self.scheduler = scheduler or TaskScheduler()
        if config.tasks.enabled:
            register_maintenance_tasks(
                self.scheduler,
                self.budget,
                self.aggregation,
                config.tasks,
                config.budget,
                config.usage,
            )

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        cipher: Optional[ApiKeyCipher] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "LLMGateway":
        """
        从配置构建网关

        Args:
            config: 网关配置
            cipher: 密钥加解密器，为空时从环境变量读取（未设置时不能保存或使用API密钥）
            http_client: 适配器共享的HTTP客户端
        """
        if cipher is None:
            try:
                cipher = ApiKeyCipher.from_env(config.security.encryption_secret_env)
            except EncryptionException as e:
                logger.warning(f"API密钥加密未配置，仅可使用无需密钥的Provider: {e}")

        engine = create_engine_from_url(config.database.url, echo=config.database.echo)
        adapter_factory = AdapterFactory(
            client=http_client,
            timeout=config.routing.generation_timeout,
            validation_timeout=config.routing.validation_timeout,
            list_models_timeout=config.routing.list_models_timeout,
        )
        return cls(config, engine, create_session_factory(engine), adapter_factory, cipher)

    async def start(self, start_scheduler: bool = True) -> None:
        """初始化数据库并启动后台任务"""
        if self.config.database.create_tables:
            await init_db(self.engine)
        if start_scheduler and self.config.tasks.enabled:
            await self.scheduler.start()
        logger.info("LLM网关已启动")

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.adapter_factory.close()
        await close_db(self.engine)
        logger.info("LLM网关已关闭")
