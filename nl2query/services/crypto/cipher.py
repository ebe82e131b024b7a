from __future__ import annotations

import base64
import binascii
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nl2query.core.config import get_settings
from nl2query.core.errors import DecryptionError, ProviderConfigError


_NONCE_BYTES = 12
# Bind ciphertexts to their purpose so they cannot be replayed as other blobs.
_AAD = b"nl2query:workspace:db_url"


def _decode_key(value: str) -> bytes:
    # Accept hex or base64 key material.
    stripped = value.strip()
    if not stripped:
        raise ValueError("key material is empty")
    try:
        return bytes.fromhex(stripped)
    except ValueError:
        try:
            return base64.b64decode(stripped, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("key material must be base64 or hex") from exc


class Cipher(Protocol):
    def encrypt(self, plain_text: str) -> str:
        ...

    def decrypt(self, cipher_text: str) -> str:
        ...


class UrlCipher:
    """AES-256-GCM for client database URLs stored in workspace records.

    Ciphertext layout is ``urlsafe_b64(nonce || ciphertext || tag)``.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ProviderConfigError("Workspace encryption key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls) -> "UrlCipher":
        settings = get_settings()
        if not settings.workspace_encryption_key:
            raise ProviderConfigError(
                "Workspace encryption key missing: set WORKSPACE_ENCRYPTION_KEY in .env."
            )
        try:
            key = _decode_key(settings.workspace_encryption_key)
        except ValueError as exc:
            raise ProviderConfigError(f"Invalid WORKSPACE_ENCRYPTION_KEY: {exc}") from exc
        return cls(key)

    def encrypt(self, plain_text: str) -> str:
        # Fresh nonce per call; equal URLs never produce equal ciphertexts.
        nonce = os.urandom(_NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plain_text.encode("utf-8"), _AAD)
        return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, cipher_text: str) -> str:
        try:
            raw = base64.urlsafe_b64decode(cipher_text.encode("ascii"))
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Stored database URL is not valid ciphertext") from exc
        if len(raw) <= _NONCE_BYTES:
            raise DecryptionError("Stored database URL is truncated")
        nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        try:
            plain = self._aesgcm.decrypt(nonce, sealed, _AAD)
        except InvalidTag as exc:
            raise DecryptionError() from exc
        return plain.decode("utf-8")
