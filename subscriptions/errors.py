"""
Subscription error hierarchy and provider error classification.

Provides:
- SubscriptionError: base for all subscription failures
- ProviderError: raised by billing provider adapters, carries the SDK error code
- BillingConfigurationError: provider cannot be configured (missing API key)
- BillingProviderError: login/logout against the provider failed
- InvalidPlanError: unknown local plan id
- EncryptionError / DecryptionError: secure store crypto failures
- ErrorKind + classify_error(): network vs cancelled vs not-allowed
- PurchaseFailureReason: structured reasons for purchase/restore failures
"""

import asyncio
from enum import Enum
from typing import Optional, Union

# Billing SDK error codes
CANCELLED_ERROR_CODE = 1
NETWORK_ERROR_CODE = 2
NOT_ALLOWED_ERROR_CODE = 3


class SubscriptionError(Exception):
    """Base exception for subscription-related failures."""

    error_code = "SUBSCRIPTION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class ProviderError(SubscriptionError):
    """Raised by a billing provider adapter when an SDK call fails."""

    error_code = "PROVIDER_ERROR"

    def __init__(self, message: str, code: Optional[Union[int, str]] = None):
        self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.code is not None:
            d["code"] = self.code
        return d


class BillingConfigurationError(SubscriptionError):
    """Raised when the billing provider cannot be configured."""

    error_code = "BILLING_NOT_CONFIGURED"

    def __init__(self, platform: str, message: Optional[str] = None):
        self.platform = platform
        super().__init__(message or f"No billing API key for platform: {platform}")


class BillingProviderError(SubscriptionError):
    """Raised when an account operation (login/logout) fails."""

    error_code = "BILLING_PROVIDER_FAILED"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(message)


class InvalidPlanError(SubscriptionError):
    """Raised when activating a plan id that is not in the catalog."""

    error_code = "INVALID_PLAN"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Invalid plan ID: {plan_id}")

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message, "plan_id": self.plan_id}


class EncryptionError(SubscriptionError):
    """Raised when encryption fails."""

    error_code = "ENCRYPTION_FAILED"


class DecryptionError(SubscriptionError):
    """Raised when decryption fails or the ciphertext was tampered with."""

    error_code = "DECRYPTION_FAILED"


class ErrorKind(str, Enum):
    """Classification of a failed provider call."""
    NETWORK = "network"
    CANCELLED = "cancelled"
    NOT_ALLOWED = "not_allowed"
    UNKNOWN = "unknown"


class PurchaseFailureReason(str, Enum):
    """Why a purchase or restore did not succeed."""
    PRODUCT_NOT_FOUND = "product_not_found"
    CANCELLED = "cancelled"
    NOT_ALLOWED = "not_allowed"
    NETWORK = "network"
    ENTITLEMENT_INACTIVE = "entitlement_inactive"
    NO_VALID_PURCHASES = "no_valid_purchases"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


_KIND_BY_CODE = {
    CANCELLED_ERROR_CODE: ErrorKind.CANCELLED,
    NETWORK_ERROR_CODE: ErrorKind.NETWORK,
    NOT_ALLOWED_ERROR_CODE: ErrorKind.NOT_ALLOWED,
}

USER_MESSAGES = {
    ErrorKind.CANCELLED: "Purchase cancelled by user",
    ErrorKind.NETWORK: "Network error - please check your connection",
    ErrorKind.NOT_ALLOWED: "Purchase not allowed",
    ErrorKind.UNKNOWN: "Purchase failed",
}


def _normalize_code(code: Optional[Union[int, str]]) -> Optional[int]:
    if code is None:
        return None
    try:
        return int(code)
    except (TypeError, ValueError):
        return None


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Classify a provider failure.

    Provider timeouts and connection errors count as network failures.
    A different provider must re-map its equivalent codes onto 1/2/3.
    """
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK
    if isinstance(exc, ProviderError):
        return _KIND_BY_CODE.get(_normalize_code(exc.code), ErrorKind.UNKNOWN)
    return ErrorKind.UNKNOWN


def failure_reason_for(kind: ErrorKind) -> PurchaseFailureReason:
    return {
        ErrorKind.NETWORK: PurchaseFailureReason.NETWORK,
        ErrorKind.CANCELLED: PurchaseFailureReason.CANCELLED,
        ErrorKind.NOT_ALLOWED: PurchaseFailureReason.NOT_ALLOWED,
    }.get(kind, PurchaseFailureReason.UNKNOWN)
