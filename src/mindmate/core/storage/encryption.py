"""Fernet-based field encryption for wellbeing data at rest.

Raw per-day health payloads and the free-text parts of check-ins (notes,
mood descriptions, activities) are encrypted before they reach SQLite.
Derived numbers used for indexed queries (mood score, metric samples,
baselines) stay in plaintext columns.

Several keys may be configured at once to allow rotation: the first key
encrypts, every key is tried for decryption.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _split_keys(keys: str | list[str]) -> list[str]:
    if isinstance(keys, str):
        keys = keys.split(",")
    return [k.strip() for k in keys if k and k.strip()]


class FieldEncryptor:
    """Encrypts JSON values and free text with one or more Fernet keys.

    Usage::

        encryptor = FieldEncryptor("key-1,key-0")
        token = encryptor.encrypt({"sleep": {"duration_seconds": 27000}})
        encryptor.decrypt(token)
        encryptor.rotate(token)  # re-encrypt under key-1
    """

    def __init__(self, keys: str | list[str]) -> None:
        """Initialize with a comma-separated key string or a list of keys.

        Raises:
            EncryptionError: If no key is given or a key is malformed.
        """
        key_list = _split_keys(keys)
        if not key_list:
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = MultiFernet([Fernet(k.encode()) for k in key_list])
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc
        self._key_count = len(key_list)

    @property
    def key_count(self) -> int:
        return self._key_count

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value. ``None`` encrypts to ``""``."""
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Value is not JSON-serializable: {exc}") from exc
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str | None) -> Any:
        """Decrypt a token produced by :meth:`encrypt`. Empty tokens give ``None``."""
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        return json.loads(plaintext)

    def encrypt_text(self, text: str | None) -> str | None:
        """Encrypt optional free text, keeping ``None`` as ``None``."""
        if text is None:
            return None
        return self.encrypt(text)

    def decrypt_text(self, token: str | None) -> str | None:
        value = self.decrypt(token)
        return value if value is None else str(value)

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key as a string."""
        return Fernet.generate_key().decode("utf-8")
