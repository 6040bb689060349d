"""
HomeBase — Credential Vault.

Symmetric, authenticated encryption for OAuth tokens at rest.

Each call derives a fresh key from ENCRYPTION_KEY with a random salt
(PBKDF2-HMAC-SHA256), then seals the plaintext with Fernet, which adds its
own random IV and an HMAC. The stored value is base64(salt || fernet_token),
so identical plaintexts never produce identical ciphertexts, and any
tampering or wrong key makes decrypt() raise instead of returning garbage.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000


class VaultError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""


class VaultConfigError(VaultError):
    """Raised when ENCRYPTION_KEY is not configured."""


def _get_encryption_key() -> str:
    from src.config import settings

    if not settings.ENCRYPTION_KEY:
        raise VaultConfigError("ENCRYPTION_KEY environment variable is not set")
    return settings.ENCRYPTION_KEY


def _derive_fernet(password: str, salt: bytes) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    key = base64.urlsafe_b64encode(kdf.derive(password.encode()))
    return Fernet(key)


def encrypt(plaintext: str) -> str:
    """Encrypt a string. Returns base64 text safe to store in a TEXT column."""
    password = _get_encryption_key()
    salt = os.urandom(SALT_LENGTH)
    token = _derive_fernet(password, salt).encrypt(plaintext.encode("utf-8"))
    return base64.b64encode(salt + token).decode("ascii")


def decrypt(ciphertext: str) -> str:
    """Decrypt a value produced by encrypt().

    Raises:
        VaultConfigError: ENCRYPTION_KEY is not set.
        VaultError: the value is malformed, tampered with, or was sealed
            with a different key.
    """
    password = _get_encryption_key()
    try:
        combined = base64.b64decode(ciphertext.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise VaultError("Ciphertext is not valid base64") from exc

    if len(combined) <= SALT_LENGTH:
        raise VaultError("Ciphertext is too short")

    salt, token = combined[:SALT_LENGTH], combined[SALT_LENGTH:]
    try:
        plaintext = _derive_fernet(password, salt).decrypt(token)
    except InvalidToken as exc:
        logger.warning("Rejected ciphertext: authentication failed")
        raise VaultError("Ciphertext failed authentication") from exc
    return plaintext.decode("utf-8")
