"""
HTTP API
FastAPI路由模块
"""

from .admin import create_admin_router
from .errors import register_exception_handlers
from .generate import create_generate_router
from .health import create_health_router

__all__ = [
    "create_admin_router",
    "create_generate_router",
    "create_health_router",
    "register_exception_handlers",
]
