"""
Health check API endpoints
健康检查API接口
"""

import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from llm_gateway import __version__
from llm_gateway.gateway import LLMGateway


def create_health_router(gateway: LLMGateway) -> APIRouter:
    """创建健康检查相关的API路由"""

    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health_check():
        """系统健康检查"""
        database = "ok"
        try:
            async with gateway.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            database = f"error: {e}"

        return {
            "status": "healthy" if database == "ok" else "unhealthy",
            "version": __version__,
            "timestamp": int(time.time()),
            "database": database,
            "encryption_configured": gateway.cipher is not None,
            "scheduler_running": gateway.scheduler.running,
        }

    return router
