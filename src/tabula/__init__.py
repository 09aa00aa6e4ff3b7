"""Tabula kernel utilities."""

from .code_cipher import ENCRYPTED_PREFIX, CodeCipher, ConfigurationError
from .semver import compare_versions, increment_version, is_update_needed, parse_version, pick_latest

__all__ = [
    "ENCRYPTED_PREFIX",
    "CodeCipher",
    "ConfigurationError",
    "compare_versions",
    "increment_version",
    "is_update_needed",
    "parse_version",
    "pick_latest",
]
