"""
Protection of sensitive provider configuration fields at rest.

Credentials inside a provider's JSON config (passwords, access/secret
keys, private key material) are stored as Fernet tokens prefixed with
``PROTECTED:`` and only unprotected in memory right before an adapter
is constructed.
"""

from __future__ import annotations

import json

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from strata_core.config import settings
from strata_core.domain.exceptions import StorageValidationError

PROTECTED_PREFIX = "PROTECTED:"

_SENSITIVE_KEYS: dict[str, tuple[str, ...]] = {
    "minio": ("accessKey", "secretKey"),
    "s3": ("accessKey", "secretKey"),
    "ftp": ("password",),
    "sftp": ("password", "privateKey", "privateKeyPassphrase", "passphrase"),
    "filesystem": (),
}


class SensitiveDataProtector:
    """
    Encrypts and decrypts sensitive values with a Fernet key.

    Usage:
        protector = SensitiveDataProtector(key)
        stored = protector.protect_config_json(raw_json, "ftp")
        raw_json = protector.unprotect_config_json(stored, "ftp")
    """

    def __init__(self, key: str | bytes | None = None):
        key = key if key is not None else settings.STORAGE_ENCRYPTION_KEY
        if not key:
            logger.warning(
                "STORAGE_ENCRYPTION_KEY is not set; generated a process-local key. "
                "Values protected now cannot be read after a restart."
            )
            key = Fernet.generate_key()
        if isinstance(key, str):
            key = key.encode("utf-8")
        self._fernet = Fernet(key)

    @staticmethod
    def is_protected(text: str | None) -> bool:
        return bool(text) and text.startswith(PROTECTED_PREFIX)

    def protect(self, text: str | None) -> str:
        if not text:
            return text or ""
        if self.is_protected(text):
            return text
        token = self._fernet.encrypt(text.encode("utf-8")).decode("ascii")
        return f"{PROTECTED_PREFIX}{token}"

    def unprotect(self, text: str | None) -> str:
        """Return the plaintext; values without the prefix pass through unchanged."""
        if not text:
            return text or ""
        if not self.is_protected(text):
            return text
        token = text[len(PROTECTED_PREFIX):]
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise StorageValidationError(
                "Protected configuration value could not be decrypted",
                message_debug="Fernet token rejected; encryption key mismatch?",
                cause=e,
            ) from e

    @staticmethod
    def sensitive_keys(provider_type: str) -> tuple[str, ...]:
        return _SENSITIVE_KEYS.get(str(provider_type).lower(), ())

    def protect_config_json(self, config_json: str, provider_type: str) -> str:
        return self._transform(config_json, provider_type, self.protect)

    def unprotect_config_json(self, config_json: str, provider_type: str) -> str:
        return self._transform(config_json, provider_type, self.unprotect)

    def _transform(self, config_json: str, provider_type: str, fn) -> str:
        keys = {k.lower() for k in self.sensitive_keys(provider_type)}
        if not config_json or not keys:
            return config_json

        try:
            data = json.loads(config_json)
        except json.JSONDecodeError as e:
            logger.warning(f"Provider config for '{provider_type}' is not valid JSON: {e}")
            return config_json

        if not isinstance(data, dict):
            return config_json

        changed = False
        for name, value in data.items():
            if name.lower() in keys and isinstance(value, str) and value:
                data[name] = fn(value)
                changed = True

        return json.dumps(data) if changed else config_json
