"""
Subscription engine configuration.

Fixed business constants live here as module-level names; deployment
settings (API keys, storage locations) are read from the environment.

Environment:
- BILLING_PLATFORM:                 "android" or "ios" (default: "android")
- REVENUECAT_ANDROID_API_KEY:       billing provider key for Android
- REVENUECAT_IOS_API_KEY:           billing provider key for iOS
- ENTITLEMENT_ID:                   entitlement that unlocks premium (default: "premium")
- BILLING_PROVIDER_TIMEOUT_SECONDS: per-call provider timeout (default: 30)
- APP_IDENTIFIER:                   stable id used for key derivation
- ENCRYPTION_SALT:                  fixed salt used for key derivation
- PROFILE_STORE_DIR:                directory for the primary profile tier
- LEGACY_STORE_PATH:                JSON document for the legacy tier
- REDIS_URL:                        service-level tier (unset: in-memory)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

ENTITLEMENT_ID = os.getenv("ENTITLEMENT_ID", "premium")

# Entitlement evaluation
GRACE_PERIOD_DAYS = 3
RECEIPT_STALENESS_DAYS = 30

# Purchase retry policy (fixed delay, not exponential)
MAX_PURCHASE_RETRIES = 3
PURCHASE_RETRY_DELAY_SECONDS = 2.0

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("BILLING_PROVIDER_TIMEOUT_SECONDS", "30"))

# Facade refresh cadence
STATUS_REFRESH_INTERVAL_SECONDS = 60 * 60

TRIAL_DURATION_DAYS = 7
REMINDER_TRIAL_DAYS_THRESHOLD = 3

# Key derivation
DEFAULT_APP_IDENTIFIER = "foodcart360-a8453"
DEFAULT_ENCRYPTION_SALT = "foodcart360-secure-salt-v1"
KEY_DERIVATION_ITERATIONS = 100_000

# Storage keys
CUSTOMER_INFO_KEY = "revenuecat_customer_info"
PURCHASE_RECEIPT_KEY = "purchase_receipt"
AUTH_TOKEN_KEY = "auth_token"
USER_DATA_KEY = "user_data"
PROFILE_KEY_PREFIX = "user_profile_"


@dataclass
class BillingConfig:
    """Billing provider configuration from environment."""
    platform: str = "android"
    android_api_key: Optional[str] = None
    ios_api_key: Optional[str] = None
    entitlement_id: str = ENTITLEMENT_ID
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Load configuration from environment variables."""
        config = cls(
            platform=os.getenv("BILLING_PLATFORM", "android").strip().lower(),
            android_api_key=os.getenv("REVENUECAT_ANDROID_API_KEY") or None,
            ios_api_key=os.getenv("REVENUECAT_IOS_API_KEY") or None,
            entitlement_id=os.getenv("ENTITLEMENT_ID", ENTITLEMENT_ID),
            timeout_seconds=float(
                os.getenv("BILLING_PROVIDER_TIMEOUT_SECONDS", str(PROVIDER_TIMEOUT_SECONDS))
            ),
        )
        if not config.api_key_for_platform():
            logger.warning(
                "Billing provider API key not configured",
                extra={"platform": config.platform},
            )
        return config

    def api_key_for_platform(self) -> Optional[str]:
        if self.platform == "android":
            return self.android_api_key
        if self.platform == "ios":
            return self.ios_api_key
        return None


@dataclass
class StorageConfig:
    """Persistence configuration from environment."""
    app_identifier: str = DEFAULT_APP_IDENTIFIER
    encryption_salt: str = DEFAULT_ENCRYPTION_SALT
    profile_store_dir: str = ".subscriptions/preferences"
    legacy_store_path: str = ".subscriptions/legacy.json"
    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            app_identifier=os.getenv("APP_IDENTIFIER", DEFAULT_APP_IDENTIFIER),
            encryption_salt=os.getenv("ENCRYPTION_SALT", DEFAULT_ENCRYPTION_SALT),
            profile_store_dir=os.getenv("PROFILE_STORE_DIR", ".subscriptions/preferences"),
            legacy_store_path=os.getenv("LEGACY_STORE_PATH", ".subscriptions/legacy.json"),
            redis_url=os.getenv("REDIS_URL") or None,
        )
