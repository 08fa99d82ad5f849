"""
Encryption utilities for the secure subscription store.

Implements AES-256-GCM with a process-lifetime key derived from a stable
application identifier and a fixed salt.

SECURITY:
- Key is derived with PBKDF2-HMAC-SHA256, deterministic from its inputs so
  data written before a restart stays readable after it
- The derived key is only ever held in memory
- Each encryption uses a unique random nonce
- Ciphertext and keys must never be logged

Usage:
    from subscriptions.encryption import StoreEncryptor, derive_encryption_key

    encryptor = StoreEncryptor(derive_encryption_key("my-app", "my-salt"))
    token = encryptor.encrypt('{"plan": "monthly"}')
    plaintext = encryptor.decrypt(token)
"""

import base64
import binascii
import logging
import secrets
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import KEY_DERIVATION_ITERATIONS
from .errors import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)


NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256
TOKEN_PREFIX = "v1."


@lru_cache(maxsize=8)
def derive_encryption_key(
    app_identifier: str,
    salt: str,
    iterations: int = KEY_DERIVATION_ITERATIONS,
) -> bytes:
    """
    Derive the store key from an application identifier and a fixed salt.

    Same inputs always produce the same key, and each distinct input set is
    derived once per process.

    Args:
        app_identifier: Stable application id (e.g. project id)
        salt: Fixed application salt
        iterations: PBKDF2 iterations

    Returns:
        32-byte key
    """
    if not app_identifier:
        raise ValueError("app_identifier is required")
    if not salt:
        raise ValueError("salt is required")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(f"{app_identifier}{salt}".encode("utf-8"))


class StoreEncryptor:
    """
    AES-256-GCM encryptor producing printable tokens for string stores.

    Token layout: "v1." + urlsafe-base64(nonce || ciphertext || tag)
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            nonce = secrets.token_bytes(NONCE_SIZE)
            sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
            return TOKEN_PREFIX + base64.urlsafe_b64encode(nonce + sealed).decode("ascii")
        except Exception as e:
            raise EncryptionError(f"Failed to encrypt data: {type(e).__name__}") from e

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            DecryptionError: Not a token, wrong key, or tampered data
        """
        if not token.startswith(TOKEN_PREFIX):
            raise DecryptionError("Value is not an encrypted token")
        try:
            blob = base64.urlsafe_b64decode(token[len(TOKEN_PREFIX):].encode("ascii"))
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Encrypted token is not valid base64") from e
        if len(blob) <= NONCE_SIZE:
            raise DecryptionError("Encrypted token is truncated")

        try:
            plaintext = self._aesgcm.decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise DecryptionError(
                "Decryption failed: data may have been tampered with or the key changed"
            ) from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted data is not valid UTF-8") from e
