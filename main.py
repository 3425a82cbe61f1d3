#!/usr/bin/env python3
"""
LLM Gateway - 多Provider路由与故障转移服务
"""

import argparse
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import (
    create_admin_router,
    create_generate_router,
    create_health_router,
    register_exception_handlers,
)
from llm_gateway import __version__
from llm_gateway.config_models import GatewayConfig
from llm_gateway.gateway import LLMGateway
from llm_gateway.utils.config import load_config
from llm_gateway.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    config: Optional[GatewayConfig] = None,
    gateway: Optional[LLMGateway] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    创建FastAPI应用

    Args:
        config: 网关配置，为空时从配置文件加载
        gateway: 已构建的网关实例（测试时注入）
        start_scheduler: 是否在启动时运行后台任务
    """
    if gateway is None:
        config = config or load_config()
        setup_logging(config.logging)
        gateway = LLMGateway.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        await gateway.start(start_scheduler=start_scheduler)
        yield
        await gateway.close()

    app = FastAPI(
        title="LLM Gateway",
        description="Multi-provider LLM routing with cost-aware failover",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(create_health_router(gateway))
    app.include_router(create_generate_router(gateway))
    app.include_router(create_admin_router(gateway))

    return app


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description="LLM Gateway")
    parser.add_argument("--config", default=None, help="Path to config YAML")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    args = parser.parse_args()

    config = load_config(args.config)
    app = create_app(config)

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info(f"LLM Gateway starting on http://{host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_config=None,  # 使用我们自己的日志配置
    )


if __name__ == "__main__":
    main()
