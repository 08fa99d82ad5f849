"""
Encrypted key-value store over a plain string tier.

Writes serialize to JSON and encrypt; if encryption fails the plaintext JSON
is written instead, trading confidentiality for availability.

Reads try decryption first and then fall back to parsing the raw entry as
JSON. That second path is what keeps pre-encryption legacy data and data
written under a previous key readable without migration tooling.

Nothing in here raises on crypto or storage trouble: failures are logged
and the operation degrades.
"""

import json
import logging
from typing import Any, Optional

from .config import (
    AUTH_TOKEN_KEY,
    CUSTOMER_INFO_KEY,
    PURCHASE_RECEIPT_KEY,
    USER_DATA_KEY,
    StorageConfig,
)
from .encryption import StoreEncryptor, derive_encryption_key
from .errors import DecryptionError, EncryptionError
from .models import CustomerInfo, PurchaseReceipt
from .tiers import KeyValueTier

logger = logging.getLogger(__name__)


class SecureStore:
    """Encrypting wrapper around a KeyValueTier."""

    def __init__(self, tier: KeyValueTier, encryptor: StoreEncryptor):
        self._tier = tier
        self._encryptor = encryptor

    @classmethod
    def from_config(cls, tier: KeyValueTier, config: Optional[StorageConfig] = None) -> "SecureStore":
        config = config or StorageConfig.from_env()
        key = derive_encryption_key(config.app_identifier, config.encryption_salt)
        return cls(tier, StoreEncryptor(key))

    async def set_encrypted_item(self, key: str, value: Any) -> bool:
        """
        Serialize, encrypt and store a value.

        Returns:
            True if the tier accepted the write
        """
        serialized = json.dumps(value)
        try:
            payload = self._encryptor.encrypt(serialized)
        except EncryptionError:
            logger.error(
                "Encryption failed, storing plaintext",
                extra={"key": key, "tier": self._tier.name},
                exc_info=True,
            )
            payload = serialized

        try:
            await self._tier.set(key, payload)
            return True
        except Exception:
            logger.warning(
                "Secure store write failed",
                extra={"key": key, "tier": self._tier.name},
                exc_info=True,
            )
            return False

    async def get_decrypted_item(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or unreadable."""
        try:
            raw = await self._tier.get(key)
        except Exception:
            logger.warning(
                "Secure store read failed",
                extra={"key": key, "tier": self._tier.name},
                exc_info=True,
            )
            return None
        if not raw:
            return None

        try:
            return json.loads(self._encryptor.decrypt(raw))
        except (DecryptionError, ValueError):
            logger.debug(
                "Decryption failed, trying plaintext",
                extra={"key": key, "tier": self._tier.name},
            )

        try:
            return json.loads(raw)
        except ValueError:
            logger.error(
                "Stored value is neither decryptable nor plain JSON",
                extra={"key": key, "tier": self._tier.name},
            )
            return None

    async def remove_item(self, key: str) -> None:
        try:
            await self._tier.remove(key)
        except Exception:
            logger.warning(
                "Secure store delete failed",
                extra={"key": key, "tier": self._tier.name},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def set_customer_info(self, info: Optional[CustomerInfo]) -> bool:
        return await self.set_encrypted_item(
            CUSTOMER_INFO_KEY, info.to_dict() if info is not None else None
        )

    async def get_customer_info(self) -> Optional[CustomerInfo]:
        raw = await self.get_decrypted_item(CUSTOMER_INFO_KEY)
        if raw is None:
            return None
        try:
            return CustomerInfo.from_dict(raw)
        except (ValueError, TypeError):
            logger.warning("Persisted customer info is malformed", exc_info=True)
            return None

    async def set_purchase_receipt(self, receipt: PurchaseReceipt) -> bool:
        return await self.set_encrypted_item(PURCHASE_RECEIPT_KEY, receipt.to_dict())

    async def get_purchase_receipt(self) -> Optional[PurchaseReceipt]:
        raw = await self.get_decrypted_item(PURCHASE_RECEIPT_KEY)
        if raw is None:
            return None
        try:
            return PurchaseReceipt.from_dict(raw)
        except (ValueError, TypeError, AttributeError):
            logger.warning("Persisted purchase receipt is malformed", exc_info=True)
            return None

    async def clear_user_data(self) -> None:
        for key in (AUTH_TOKEN_KEY, USER_DATA_KEY, CUSTOMER_INFO_KEY):
            await self.remove_item(key)
