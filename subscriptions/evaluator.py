"""
Entitlement evaluation over a CustomerInfo snapshot and wall-clock time.

Three states are distinguished:
- active:  the provider reports the entitlement active
- grace:   inactive, but expired between 1 and GRACE_PERIOD_DAYS whole days ago
- expired: anything else

Offline receipt validation is shape/expiry/staleness only. A receipt older
than RECEIPT_STALENESS_DAYS is rejected even if it looks active, so the
longest a device can claim access without a live check is bounded by
grace + staleness.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import ENTITLEMENT_ID, GRACE_PERIOD_DAYS, RECEIPT_STALENESS_DAYS
from .models import (
    CustomerInfo,
    GracePeriod,
    PurchaseReceipt,
    StatusSource,
    SubscriptionStatus,
    days_until,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
RECEIPT_STALENESS_WINDOW = timedelta(days=RECEIPT_STALENESS_DAYS)

NO_GRACE = GracePeriod(in_grace_period=False, days_remaining=0)


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def grace_period(
    info: Optional[CustomerInfo],
    *,
    entitlement_id: str = ENTITLEMENT_ID,
    now: Optional[datetime] = None,
) -> GracePeriod:
    """Grace iff 0 < floor(days since expiration) <= GRACE_PERIOD_DAYS."""
    if info is None:
        return NO_GRACE
    entitlement = info.entitlement(entitlement_id)
    if entitlement is None or entitlement.expiration_date is None:
        return NO_GRACE

    days_since_expiration = (_now(now) - entitlement.expiration_date) // ONE_DAY
    if 0 < days_since_expiration <= GRACE_PERIOD_DAYS:
        return GracePeriod(
            in_grace_period=True,
            days_remaining=GRACE_PERIOD_DAYS - days_since_expiration,
        )
    return NO_GRACE


def has_entitlement(
    info: Optional[CustomerInfo],
    *,
    entitlement_id: str = ENTITLEMENT_ID,
    now: Optional[datetime] = None,
) -> bool:
    if info is None:
        return False
    entitlement = info.entitlement(entitlement_id)
    if entitlement is None:
        return False
    if entitlement.is_active:
        return True

    grace = grace_period(info, entitlement_id=entitlement_id, now=now)
    if grace.in_grace_period:
        logger.info(
            "Entitlement in grace period",
            extra={"entitlement_id": entitlement_id, "days_remaining": grace.days_remaining},
        )
        return True
    return False


def validate_receipt_offline(
    receipt: Optional[PurchaseReceipt],
    *,
    entitlement_id: str = ENTITLEMENT_ID,
    now: Optional[datetime] = None,
) -> bool:
    if receipt is None:
        return False
    entitlement = receipt.customer_info.entitlement(entitlement_id)
    if entitlement is None or not entitlement.is_active:
        return False
    if _now(now) - receipt.stored_at > RECEIPT_STALENESS_WINDOW:
        logger.info(
            "Stored receipt is stale",
            extra={"entitlement_id": entitlement_id, "stored_at": receipt.stored_at.isoformat()},
        )
        return False
    return True


def entitlement_status(
    info: Optional[CustomerInfo],
    *,
    entitlement_id: str = ENTITLEMENT_ID,
    now: Optional[datetime] = None,
) -> SubscriptionStatus:
    """Billing-side part of SubscriptionStatus: active, grace or nothing."""
    compare_at = _now(now)
    entitlement = info.entitlement(entitlement_id) if info is not None else None
    if entitlement is None:
        return SubscriptionStatus()

    if entitlement.is_active:
        remaining = (
            days_until(entitlement.expiration_date, compare_at)
            if entitlement.expiration_date is not None
            else 0
        )
        return SubscriptionStatus(
            is_active=True,
            days_remaining=remaining,
            expiration_date=entitlement.expiration_date,
            source=StatusSource.ENTITLEMENT,
        )

    grace = grace_period(info, entitlement_id=entitlement_id, now=compare_at)
    if grace.in_grace_period:
        return SubscriptionStatus(
            is_active=True,
            in_grace_period=True,
            days_remaining=grace.days_remaining,
            expiration_date=entitlement.expiration_date,
            source=StatusSource.GRACE,
        )

    return SubscriptionStatus(expiration_date=entitlement.expiration_date)
