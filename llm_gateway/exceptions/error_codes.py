"""
统一错误码体系
定义网关所有错误的标准化错误码
"""

from enum import Enum


class ErrorCode(Enum):
    """系统错误码枚举"""

    # 通用错误 (1000-1099)
    UNKNOWN_ERROR = "E1000"
    INVALID_REQUEST = "E1001"
    INVALID_PARAMETER = "E1002"
    RESOURCE_NOT_FOUND = "E1003"

    # 配置错误 (1100-1199)
    CONFIG_LOAD_FAILED = "E1100"
    CONFIG_INVALID = "E1101"
    CONFIG_MISSING_REQUIRED = "E1102"
    CONFIG_PARSE_ERROR = "E1103"

    # 路由错误 (1200-1299)
    NO_AVAILABLE_PROVIDERS = "E1200"
    ALL_PROVIDERS_FAILED = "E1201"
    FEATURE_MAPPING_INVALID = "E1202"

    # Provider错误 (1300-1399)
    PROVIDER_NOT_FOUND = "E1300"
    PROVIDER_DISABLED = "E1301"
    ADAPTER_NOT_FOUND = "E1302"
    MODEL_NOT_FOUND = "E1303"

    # 安全错误 (1400-1499)
    ENCRYPTION_KEY_MISSING = "E1400"
    ENCRYPTION_KEY_INVALID = "E1401"
    DECRYPTION_FAILED = "E1402"
    CIPHERTEXT_MALFORMED = "E1403"

    # 预算错误 (1500-1599)
    BUDGET_INVALID_PERIOD = "E1500"


ERROR_MESSAGES = {
    ErrorCode.UNKNOWN_ERROR: "未知错误",
    ErrorCode.INVALID_REQUEST: "无效请求",
    ErrorCode.INVALID_PARAMETER: "参数错误",
    ErrorCode.RESOURCE_NOT_FOUND: "资源不存在",
    ErrorCode.CONFIG_LOAD_FAILED: "配置加载失败",
    ErrorCode.CONFIG_INVALID: "配置无效",
    ErrorCode.CONFIG_MISSING_REQUIRED: "缺少必需的配置项",
    ErrorCode.CONFIG_PARSE_ERROR: "配置解析错误",
    ErrorCode.NO_AVAILABLE_PROVIDERS: "没有可用的Provider",
    ErrorCode.ALL_PROVIDERS_FAILED: "所有Provider均请求失败",
    ErrorCode.FEATURE_MAPPING_INVALID: "功能映射规则无效",
    ErrorCode.PROVIDER_NOT_FOUND: "Provider不存在",
    ErrorCode.PROVIDER_DISABLED: "Provider已禁用",
    ErrorCode.ADAPTER_NOT_FOUND: "找不到对应的适配器",
    ErrorCode.MODEL_NOT_FOUND: "模型不存在",
    ErrorCode.ENCRYPTION_KEY_MISSING: "未配置API密钥加密密钥",
    ErrorCode.ENCRYPTION_KEY_INVALID: "API密钥加密密钥格式错误",
    ErrorCode.DECRYPTION_FAILED: "API密钥解密失败",
    ErrorCode.CIPHERTEXT_MALFORMED: "加密数据格式错误",
    ErrorCode.BUDGET_INVALID_PERIOD: "无效的预算周期",
}


def get_error_message(error_code: ErrorCode, default: str = "未知错误") -> str:
    """获取错误码对应的消息"""
    return ERROR_MESSAGES.get(error_code, default)
