"""Symmetric encryption for credentials at rest.

AES-256-GCM with a PBKDF2-SHA256 derived key from the ``cryptography``
library. Tokens are url-safe base64 of ``salt | nonce | ciphertext+tag``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from utils.exceptions import ConfigurationError, StaleCredentialError


logger = logging.getLogger(__name__)

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
KDF_ITERATIONS = 100_000


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_BYTES, salt=salt, iterations=KDF_ITERATIONS)
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt *plaintext* with a key derived from *key*."""
    if not key:
        raise ConfigurationError("Encryption key is not configured")
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(_derive_key(key, salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.urlsafe_b64encode(salt + nonce + sealed).decode("ascii")


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt a token from :func:`encrypt`.

    Any failure (wrong key, truncated or tampered token) raises
    :class:`StaleCredentialError`; the caller must ask the user to re-authenticate.
    """
    if not key:
        raise ConfigurationError("Encryption key is not configured")
    try:
        raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise StaleCredentialError("Credential token is malformed") from e

    if len(raw) <= SALT_BYTES + NONCE_BYTES:
        raise StaleCredentialError("Credential token is truncated")

    salt = raw[:SALT_BYTES]
    nonce = raw[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
    sealed = raw[SALT_BYTES + NONCE_BYTES:]
    try:
        plain = AESGCM(_derive_key(key, salt)).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise StaleCredentialError("Credential cannot be decrypted with the current key") from e
    return plain.decode("utf-8")


class SecretBox:
    """Binds the configured key so callers only pass ciphertext around."""

    def __init__(self, key: Optional[str]):
        self._key = key or ""

    @property
    def configured(self) -> bool:
        return bool(self._key)

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: str) -> str:
        return decrypt(ciphertext, self._key)

    def __repr__(self) -> str:
        return f"SecretBox(configured={self.configured})"
