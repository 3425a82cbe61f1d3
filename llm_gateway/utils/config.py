"""配置管理模块"""

import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from llm_gateway.config_models import GatewayConfig
from llm_gateway.exceptions import ConfigurationException, ErrorCode

PROJECT_ROOT = Path(__file__).parent.parent.parent


def load_config(config_path: Optional[Union[str, Path]] = None) -> GatewayConfig:
    """
    加载配置文件

    Args:
        config_path: 配置文件路径，默认为 config/config.yaml，不存在时退回 config/example.yaml

    Returns:
        校验后的网关配置
    """
    # 加载环境变量
    load_dotenv()

    raw = load_raw_config(config_path)

    # DATABASE_URL 环境变量优先
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        raw.setdefault("database", {})["url"] = database_url

    try:
        return GatewayConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationException(
            ErrorCode.CONFIG_INVALID,
            f"配置校验失败: {e}",
            config_path=str(config_path) if config_path else None,
            cause=e,
        ) from e


def load_raw_config(config_path: Optional[Union[str, Path]] = None) -> dict[str, Any]:
    """读取YAML并替换环境变量，文件缺失时返回空字典"""
    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "config.yaml"
        if not config_path.exists():
            config_path = PROJECT_ROOT / "config" / "example.yaml"

    path = Path(config_path)
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationException(
            ErrorCode.CONFIG_PARSE_ERROR,
            f"配置文件格式错误: {e}",
            config_path=str(path),
            cause=e,
        ) from e

    if not isinstance(config, dict):
        raise ConfigurationException(
            ErrorCode.CONFIG_INVALID,
            "配置文件顶层必须是映射",
            config_path=str(path),
        )

    return _replace_env_vars(config)


def _replace_env_vars(obj: Any) -> Any:
    """
    递归替换配置中的环境变量占位符

    Args:
        obj: 配置对象

    Returns:
        替换后的配置对象
    """
    if isinstance(obj, dict):
        return {key: _replace_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_replace_env_vars(item) for item in obj]
    elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        # ${VAR_NAME} 或 ${VAR_NAME:default_value}
        env_var = obj[2:-1]
        default_value = None
        if ":" in env_var:
            env_var, default_value = env_var.split(":", 1)

        value = os.getenv(env_var, default_value)
        if value is None:
            return obj
        return value
    else:
        return obj


def get_config_value(config: dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    获取嵌套配置值

    Args:
        config: 配置字典
        key_path: 配置路径，如 'routing.refusal_max_length'
        default: 默认值
    """
    value: Any = config
    for key in key_path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value
