"""Tests for FieldEncryptor (Fernet / MultiFernet)."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from mindmate.core.storage.encryption import EncryptionError, FieldEncryptor


@pytest.fixture
def key() -> str:
    return Fernet.generate_key().decode()


class TestFieldEncryptor:
    def test_roundtrip_dict(self, key):
        enc = FieldEncryptor(key)
        data = {"sleep": {"duration_seconds": 27000, "quality": "good"}}
        token = enc.encrypt(data)
        assert "27000" not in token
        assert enc.decrypt(token) == data

    def test_none_encrypts_to_empty(self, key):
        enc = FieldEncryptor(key)
        assert enc.encrypt(None) == ""
        assert enc.decrypt("") is None
        assert enc.decrypt(None) is None

    def test_text_helpers_keep_none(self, key):
        enc = FieldEncryptor(key)
        assert enc.encrypt_text(None) is None
        token = enc.encrypt_text("rough day at work")
        assert enc.decrypt_text(token) == "rough day at work"

    def test_wrong_key_raises(self, key):
        token = FieldEncryptor(key).encrypt({"a": 1})
        other = FieldEncryptor(Fernet.generate_key().decode())
        with pytest.raises(EncryptionError, match="Decryption failed"):
            other.decrypt(token)

    def test_empty_key_rejected(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("")

    def test_malformed_key_rejected(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor("not-a-fernet-key")

    def test_non_serializable_rejected(self, key):
        with pytest.raises(EncryptionError):
            FieldEncryptor(key).encrypt({"x": object()})

    def test_generate_key_is_usable(self):
        enc = FieldEncryptor(FieldEncryptor.generate_key())
        assert enc.decrypt(enc.encrypt([1, 2, 3])) == [1, 2, 3]


class TestKeyRotation:
    def test_old_tokens_readable_after_rotation(self, key):
        old = FieldEncryptor(key)
        token = old.encrypt({"steps": 8000})

        new_key = Fernet.generate_key().decode()
        rotated = FieldEncryptor(f"{new_key},{key}")
        assert rotated.key_count == 2
        assert rotated.decrypt(token) == {"steps": 8000}

    def test_rotate_reencrypts_under_primary(self, key):
        token = FieldEncryptor(key).encrypt({"steps": 8000})
        new_key = Fernet.generate_key().decode()
        rotated = FieldEncryptor([new_key, key])

        fresh = rotated.rotate(token)
        assert FieldEncryptor(new_key).decrypt(fresh) == {"steps": 8000}
