"""
数据库连接和会话管理
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from llm_gateway.models import Base
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)


def create_engine_from_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    创建异步引擎

    Args:
        database_url: 数据库URL，如 sqlite+aiosqlite:///./data/llm_gateway.db
        echo: 是否输出SQL
    """
    if "sqlite" in database_url:
        # SQLite特殊配置，文件库需要先创建目录
        db_path = make_url(database_url).database
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

        # 启用外键约束（级联删除依赖它）
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    else:
        engine = create_async_engine(database_url, pool_pre_ping=True, echo=echo)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """创建异步会话工厂"""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话上下文管理器，正常退出时提交，异常时回滚"""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """初始化数据库（创建缺失的表）"""
    logger.info("正在初始化数据库...")

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("数据库初始化完成")
    except Exception as e:
        logger.error(f"数据库初始化失败: {e}")
        raise


async def close_db(engine: AsyncEngine) -> None:
    """关闭数据库连接"""
    logger.info("正在关闭数据库连接...")
    await engine.dispose()
    logger.info("数据库连接已关闭")
