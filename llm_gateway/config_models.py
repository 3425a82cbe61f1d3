"""
Pydantic models for configuration validation.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_USER_ERROR_MESSAGE = "AI 서비스에 연결할 수 없습니다. 잠시 후 다시 시도해주세요."


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 7601
    debug: bool = False


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///./data/llm_gateway.db"
    echo: bool = False
    create_tables: bool = True


class SecurityConfig(BaseModel):
    # 存放 64 位十六进制 AES-256 密钥的环境变量名
    encryption_secret_env: str = "API_KEY_ENCRYPTION_SECRET"


class RoutingConfig(BaseModel):
    refusal_max_length: int = Field(default=500, ge=0)
    user_error_message: str = DEFAULT_USER_ERROR_MESSAGE
    generation_timeout: float = Field(default=120.0, gt=0)
    validation_timeout: float = Field(default=10.0, gt=0)
    list_models_timeout: float = Field(default=15.0, gt=0)
    vision_max_output_tokens: int = 2048


class CacheConfig(BaseModel):
    provider_ttl_seconds: float = Field(default=300.0, gt=0)


class BudgetSettings(BaseModel):
    # Python weekday 编号: 0=周一 ... 6=周日
    week_start_day: int = Field(default=6, ge=0, le=6)
    alert_check_interval: int = Field(default=3600, gt=0)


class UsageConfig(BaseModel):
    retention_days: int = Field(default=90, gt=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # text or json
    file: Optional[str] = None
    max_file_size: int = 50 * 1024 * 1024
    backup_count: int = 5

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("logging.format must be 'text' or 'json'")
        return v


class TasksConfig(BaseModel):
    enabled: bool = True
    budget_reset_interval: int = Field(default=300, gt=0)
    aggregation_interval: int = Field(default=86400, gt=0)
    cleanup_interval: int = Field(default=86400, gt=0)


class GatewayConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    usage: UsageConfig = Field(default_factory=UsageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
