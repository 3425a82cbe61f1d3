"""
API exception handlers
网关异常到HTTP响应的统一映射
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from llm_gateway.exceptions import (
    AdapterNotFoundException,
    BaseGatewayException,
    ConfigurationException,
    EncryptionException,
    FailoverError,
    ModelNotFoundException,
    ProviderNotFoundException,
)
from llm_gateway.utils.logger import get_logger

logger = get_logger(__name__)


def status_code_for(exc: BaseGatewayException) -> int:
    if isinstance(exc, FailoverError):
        return 503
    if isinstance(exc, (ProviderNotFoundException, ModelNotFoundException)):
        return 404
    if isinstance(exc, (ConfigurationException, EncryptionException)):
        return 500
    if isinstance(exc, AdapterNotFoundException):
        return 422
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FailoverError)
    async def handle_failover_error(request: Request, exc: FailoverError) -> JSONResponse:
        # 诊断信息只写日志，响应中只给出对用户安全的提示
        logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "error": {
                    "code": exc.error_code.value,
                    "message": exc.user_message,
                    "feature_type": exc.feature_type,
                    "total_attempts": exc.total_attempts,
                },
            },
        )

    @app.exception_handler(BaseGatewayException)
    async def handle_gateway_exception(request: Request, exc: BaseGatewayException) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} 异常: {exc}")
        return JSONResponse(status_code=status_code, content={"success": False, "error": exc.to_dict()})
