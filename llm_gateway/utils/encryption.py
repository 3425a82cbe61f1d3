"""
API密钥加解密
AES-256-GCM，存储格式为 ivHex:authTagHex:ciphertextHex
"""

import os
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from llm_gateway.exceptions import EncryptionException, ErrorCode

DEFAULT_SECRET_ENV = "API_KEY_ENCRYPTION_SECRET"
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_HEX_LENGTH = 64


class ApiKeyCipher:
    """API密钥加解密器"""

    def __init__(self, secret_hex: str):
        if not secret_hex or len(secret_hex) != KEY_HEX_LENGTH:
            raise EncryptionException(
                ErrorCode.ENCRYPTION_KEY_INVALID,
                f"Encryption secret must be {KEY_HEX_LENGTH} hex characters",
            )
        try:
            key = bytes.fromhex(secret_hex)
        except ValueError as e:
            raise EncryptionException(
                ErrorCode.ENCRYPTION_KEY_INVALID,
                "Encryption secret is not valid hex",
                cause=e,
            ) from e
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_env(cls, env_var: str = DEFAULT_SECRET_ENV) -> "ApiKeyCipher":
        """从环境变量读取密钥"""
        secret_hex = os.getenv(env_var)
        if not secret_hex:
            raise EncryptionException(
                ErrorCode.ENCRYPTION_KEY_MISSING,
                f"{env_var} environment variable is not set",
                details={"env_var": env_var},
            )
        return cls(secret_hex)

    def encrypt(self, plaintext: str) -> str:
        """
        加密API密钥

        Args:
            plaintext: 明文密钥

        Returns:
            ivHex:authTagHex:ciphertextHex
        """
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        """
        解密API密钥，任一段缺失或校验失败都会抛出 EncryptionException
        """
        parts = encrypted.split(":") if encrypted else []
        if len(parts) != 3 or not all(parts):
            raise EncryptionException(
                ErrorCode.CIPHERTEXT_MALFORMED,
                "Invalid encrypted data format",
            )

        iv_hex, tag_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except (ValueError, InvalidTag) as e:
            raise EncryptionException(
                ErrorCode.DECRYPTION_FAILED,
                "Failed to decrypt API key",
                cause=e,
            ) from e

        return plaintext.decode("utf-8")


def mask_api_key(api_key: Optional[str]) -> str:
    """用于展示的脱敏密钥，长度不超过8时完全隐藏"""
    if not api_key or len(api_key) <= 8:
        return "***"
    return f"{api_key[:3]}***...***{api_key[-3:]}"


def generate_secret() -> str:
    """生成新的64位十六进制密钥"""
    return secrets.token_hex(KEY_HEX_LENGTH // 2)
