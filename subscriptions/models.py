from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import PurchaseFailureReason


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, epoch milliseconds or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class EntitlementInfo:
    """A single entitlement as reported by the billing provider."""

    identifier: str
    is_active: bool
    expiration_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "isActive": self.is_active,
            "expirationDate": format_timestamp(self.expiration_date),
        }

    @classmethod
    def from_dict(cls, identifier: str, raw: Mapping[str, Any]) -> EntitlementInfo:
        return cls(
            identifier=str(raw.get("identifier") or identifier),
            is_active=bool(raw.get("isActive", False)),
            expiration_date=parse_timestamp(raw.get("expirationDate")),
        )


@dataclass(frozen=True)
class CustomerInfo:
    """Customer snapshot from the billing provider. Replaced wholesale, never patched."""

    entitlements: Mapping[str, EntitlementInfo] = field(default_factory=dict)
    app_user_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entitlements", MappingProxyType(dict(self.entitlements)))

    def entitlement(self, entitlement_id: str) -> Optional[EntitlementInfo]:
        return self.entitlements.get(entitlement_id)

    def to_dict(self) -> dict:
        return {
            "entitlements": {key: value.to_dict() for key, value in self.entitlements.items()},
            "appUserId": self.app_user_id,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CustomerInfo:
        if not isinstance(raw, Mapping):
            raise ValueError("customer info must be an object")
        entitlements_raw = raw.get("entitlements") or {}
        if not isinstance(entitlements_raw, Mapping):
            raise ValueError("customer info entitlements must be an object")
        return cls(
            entitlements={
                key: EntitlementInfo.from_dict(key, value)
                for key, value in entitlements_raw.items()
                if isinstance(value, Mapping)
            },
            app_user_id=raw.get("appUserId"),
        )


@dataclass(frozen=True)
class PurchaseReceipt:
    """Locally persisted proof of the last successful purchase or restore."""

    customer_info: CustomerInfo
    stored_at: datetime
    validation_attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "customerInfo": self.customer_info.to_dict(),
            "storedAt": format_timestamp(self.stored_at),
            "validationAttempts": self.validation_attempts,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PurchaseReceipt:
        stored_at = parse_timestamp(raw.get("storedAt"))
        if stored_at is None:
            raise ValueError("receipt storedAt is required")
        return cls(
            customer_info=CustomerInfo.from_dict(raw.get("customerInfo") or {}),
            stored_at=stored_at,
            validation_attempts=int(raw.get("validationAttempts", 0)),
        )


@dataclass(frozen=True)
class Package:
    """A purchasable package inside an offering."""

    identifier: str
    product_id: str


@dataclass(frozen=True)
class Offering:
    identifier: str
    packages: Tuple[Package, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "packages", tuple(self.packages))

    def find_package(self, product_id: str) -> Optional[Package]:
        for package in self.packages:
            if package.product_id == product_id:
                return package
        return None


@dataclass(frozen=True)
class GracePeriod:
    in_grace_period: bool = False
    days_remaining: int = 0


class StatusSource(str, Enum):
    """What granted access in a SubscriptionStatus."""
    ENTITLEMENT = "entitlement"
    GRACE = "grace"
    PLAN = "plan"
    TRIAL = "trial"
    NONE = "none"


@dataclass(frozen=True)
class SubscriptionStatus:
    """Derived view of a user's access. Recomputed on demand, never persisted."""

    is_active: bool = False
    in_grace_period: bool = False
    days_remaining: int = 0
    expiration_date: Optional[datetime] = None
    source: StatusSource = StatusSource.NONE
    is_trial_active: bool = False
    current_plan: Optional[str] = None
    trial_end_date: Optional[datetime] = None
    tampered: bool = False

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "in_grace_period": self.in_grace_period,
            "days_remaining": self.days_remaining,
            "expiration_date": format_timestamp(self.expiration_date),
            "source": self.source.value,
            "is_trial_active": self.is_trial_active,
            "current_plan": self.current_plan,
            "trial_end_date": format_timestamp(self.trial_end_date),
            "tampered": self.tampered,
        }


@dataclass(frozen=True)
class SubscriptionPlan:
    """Local plan catalog entry."""

    id: str
    name: str
    price: float
    duration_days: int
    savings: Optional[str] = None
    popular: bool = False
    features: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "duration_days": self.duration_days,
            "savings": self.savings,
            "popular": self.popular,
            "features": list(self.features),
        }


@dataclass
class PurchaseResult:
    """Outcome of a purchase attempt."""
    success: bool
    error: Optional[str] = None
    reason: Optional[PurchaseFailureReason] = None
    attempts: int = 0

    @classmethod
    def failed(
        cls, reason: PurchaseFailureReason, error: str, attempts: int = 0
    ) -> PurchaseResult:
        return cls(success=False, error=error, reason=reason, attempts=attempts)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        if self.reason is not None:
            result["reason"] = self.reason.value
        return result


@dataclass
class RestoreResult:
    """Outcome of a restore. NO_VALID_PURCHASES is an outcome, not an error."""
    success: bool
    error: Optional[str] = None
    reason: Optional[PurchaseFailureReason] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        if self.reason is not None:
            result["reason"] = self.reason.value
        return result


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from now until moment, rounded up, never negative."""
    seconds = (moment - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
