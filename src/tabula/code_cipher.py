"""At-rest encryption for handler source text.

Wire format is ``<16-byte IV as hex>:<base64 ciphertext>`` (AES-256-CBC with
PKCS7 padding). Text without a ``:`` separator is legacy plaintext and passes
through ``decrypt`` unchanged.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger("tabula.crypto")

ENCRYPTED_PREFIX = "ENCRYPTED:"
_DEV_SECRET = "default-dev-secret-key"
_KEY_BYTES = 32
_IV_BYTES = 16
_WIRE_RE = re.compile(r"^[0-9a-fA-F]{32}:[A-Za-z0-9+/=]*$")


class ConfigurationError(RuntimeError):
    pass


def _get_env() -> str:
    return os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"


def _derive_key(secret: str) -> bytes:
    raw = secret.encode("utf-8")
    return raw.ljust(_KEY_BYTES, b" ")[:_KEY_BYTES]


class CodeCipher:
    def __init__(self, secret: str) -> None:
        if not isinstance(secret, str) or not secret:
            raise ConfigurationError("handler encryption secret is empty")
        self._key = _derive_key(secret)

    @classmethod
    def from_env(cls) -> "CodeCipher":
        secret = os.getenv("HANDLER_ENCRYPTION_KEY", "").strip()
        if secret:
            return cls(secret)
        if _get_env() == "dev":
            logger.warning("HANDLER_ENCRYPTION_KEY not set, using development key")
            return cls(_DEV_SECRET)
        raise ConfigurationError("HANDLER_ENCRYPTION_KEY is not set")

    def encrypt(self, code: str) -> str:
        if not code:
            return ""
        try:
            iv = os.urandom(_IV_BYTES)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(code.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            data = encryptor.update(padded) + encryptor.finalize()
            return f"{iv.hex()}:{base64.b64encode(data).decode('ascii')}"
        except Exception as exc:
            logger.error("code_encrypt_failed error=%s", exc)
            return ""

    def decrypt(self, payload: str) -> str:
        if not payload:
            return ""
        if ":" not in payload:
            return payload
        # python source is full of colons; only the iv:data shape is ciphertext
        if not _WIRE_RE.match(payload):
            return payload
        iv_hex, _, data = payload.partition(":")
        try:
            iv = bytes.fromhex(iv_hex)
            raw = base64.b64decode(data, validate=True)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
            logger.error("code_decrypt_failed error=%s", exc)
            return ""

    def is_encrypted(self, payload: str | None) -> bool:
        return isinstance(payload, str) and bool(_WIRE_RE.match(payload))
