"""日志系统模块 - 结构化格式、日志轮换"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from llm_gateway.config_models import LoggingConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# 第三方库的噪音日志
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio", "uvicorn.access")


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(JSON_FORMAT)
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    设置全局日志系统

    Args:
        config: 日志配置，为空时使用默认配置（INFO级别、文本格式、仅控制台）
    """
    config = config or LoggingConfig()
    log_level = getattr(logging, config.level.upper(), logging.INFO)

    formatter = _build_formatter(config.format)
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # 添加文件处理器（轮换日志）
    if config.file:
        log_file = Path(config.file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=config.max_file_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            print(f"Failed to setup file logging: {e}", file=sys.stderr)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # 配置根日志记录器
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    获取日志记录器

    Args:
        name: 日志记录器名称，通常为 __name__

    Returns:
        structlog 日志记录器
    """
    return structlog.get_logger(name or "llm_gateway")
