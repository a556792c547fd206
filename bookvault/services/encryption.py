"""
AES-256-GCM encryption of book files.

Book blobs are stored as raw ciphertext; the 12-byte IV and 16-byte auth tag
are kept apart (base64) in the books table and copied to each purchase.
"""
import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from bookvault.core.config import settings
from bookvault.services.errors import ContentCorrupted

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class EncryptionResult:
    encrypted_data: bytes
    iv: bytes
    auth_tag: bytes

    @property
    def iv_b64(self) -> str:
        return base64.b64encode(self.iv).decode("ascii")

    @property
    def auth_tag_b64(self) -> str:
        return base64.b64encode(self.auth_tag).decode("ascii")


class BookCipher:
    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(f"key must be {KEY_LENGTH} bytes (received {len(key)} bytes)")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls) -> "BookCipher":
        return cls(base64.b64decode(settings.book_encryption_key))

    def encrypt(self, data: bytes, iv: bytes | None = None) -> EncryptionResult:
        iv = iv if iv is not None else os.urandom(IV_LENGTH)
        if len(iv) != IV_LENGTH:
            raise ValueError(f"iv must be {IV_LENGTH} bytes")
        sealed = self._aesgcm.encrypt(iv, data, None)
        return EncryptionResult(
            encrypted_data=sealed[:-TAG_LENGTH],
            iv=iv,
            auth_tag=sealed[-TAG_LENGTH:],
        )

    def decrypt(self, encrypted_data: bytes, iv: bytes, auth_tag: bytes) -> bytes:
        """All-or-nothing: returns the full plaintext or raises ContentCorrupted."""
        if len(iv) != IV_LENGTH or len(auth_tag) != TAG_LENGTH:
            raise ContentCorrupted("Invalid encryption metadata")
        try:
            return self._aesgcm.decrypt(iv, bytes(encrypted_data) + auth_tag, None)
        except InvalidTag:
            raise ContentCorrupted("Authentication tag mismatch")

    def decrypt_b64(self, encrypted_data: bytes, iv_b64: str | None, tag_b64: str | None) -> bytes:
        """Decrypt with IV/tag as stored in the database (base64 text)."""
        iv = _decode_b64(iv_b64)
        tag = _decode_b64(tag_b64)
        if iv is None or tag is None:
            raise ContentCorrupted("Missing encryption metadata")
        return self.decrypt(encrypted_data, iv, tag)


def _decode_b64(value: str | None) -> bytes | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
