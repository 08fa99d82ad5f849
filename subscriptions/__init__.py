"""
Offline-resilient subscription entitlements.

This package provides:
- Entitlement evaluation with a 3-day grace period and 30-day receipt staleness
- A billing gateway with single-flight init/purchase, bounded retry and cache fallback
- An encrypted key-value store that still reads legacy plaintext entries
- A multi-tier profile cache with write-through migration to the primary tier
- A facade with an hourly refresh loop and caller actions

Usage:
    from subscriptions import build_subscription_facade

    facade = build_subscription_facade(provider)
    await facade.start()
    status = await facade.get_status()
"""

from subscriptions.errors import (
    BillingConfigurationError,
    BillingProviderError,
    ErrorKind,
    InvalidPlanError,
    ProviderError,
    PurchaseFailureReason,
    SubscriptionError,
)
from subscriptions.evaluator import (
    entitlement_status,
    grace_period,
    has_entitlement,
    validate_receipt_offline,
)
from subscriptions.facade import SubscriptionFacade, build_subscription_facade
from subscriptions.gateway import BillingGateway, build_gateway
from subscriptions.models import (
    CustomerInfo,
    EntitlementInfo,
    GracePeriod,
    Offering,
    Package,
    PurchaseReceipt,
    PurchaseResult,
    RestoreResult,
    StatusSource,
    SubscriptionStatus,
)
from subscriptions.profile_cache import ProfileCache, build_profile_cache
from subscriptions.secure_store import SecureStore

__all__ = [
    # Errors
    "BillingConfigurationError",
    "BillingProviderError",
    "ErrorKind",
    "InvalidPlanError",
    "ProviderError",
    "PurchaseFailureReason",
    "SubscriptionError",
    # Evaluation
    "entitlement_status",
    "grace_period",
    "has_entitlement",
    "validate_receipt_offline",
    # Services
    "BillingGateway",
    "ProfileCache",
    "SecureStore",
    "SubscriptionFacade",
    "build_gateway",
    "build_profile_cache",
    "build_subscription_facade",
    # Models
    "CustomerInfo",
    "EntitlementInfo",
    "GracePeriod",
    "Offering",
    "Package",
    "PurchaseReceipt",
    "PurchaseResult",
    "RestoreResult",
    "StatusSource",
    "SubscriptionStatus",
]
