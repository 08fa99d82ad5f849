from __future__ import annotations

from datetime import timedelta

import pytest

from subscriptions.evaluator import (
    entitlement_status,
    grace_period,
    has_entitlement,
    validate_receipt_offline,
)
from subscriptions.models import CustomerInfo, EntitlementInfo, PurchaseReceipt, StatusSource

from .fakes import NOW, premium_info


def _expired(days_ago: float) -> CustomerInfo:
    return premium_info(is_active=False, expires_in=-timedelta(days=days_ago))


# =============================================================================
# Grace period
# =============================================================================


@pytest.mark.parametrize("days_ago", [1, 2, 3])
def test_grace_period_within_window(days_ago):
    grace = grace_period(_expired(days_ago), now=NOW)

    assert grace.in_grace_period is True
    assert grace.days_remaining == 3 - days_ago


def test_grace_period_same_day_expiry_is_not_grace():
    grace = grace_period(_expired(0.5), now=NOW)
    assert grace.in_grace_period is False
    assert grace.days_remaining == 0


@pytest.mark.parametrize("days_ago", [4, 100])
def test_grace_period_past_window_is_expired(days_ago):
    assert grace_period(_expired(days_ago), now=NOW).in_grace_period is False


def test_grace_period_future_expiration_is_not_grace():
    info = premium_info(is_active=False, expires_in=timedelta(days=2))
    assert grace_period(info, now=NOW).in_grace_period is False


def test_grace_period_uses_whole_days():
    # 3 days and 23 hours ago floors to 3 days
    grace = grace_period(_expired(3 + 23 / 24), now=NOW)
    assert grace.in_grace_period is True
    assert grace.days_remaining == 0


def test_grace_period_without_expiration_or_info():
    assert grace_period(None, now=NOW).in_grace_period is False
    assert grace_period(premium_info(is_active=False, expires_in=None), now=NOW).in_grace_period is False
    assert grace_period(CustomerInfo(), now=NOW).in_grace_period is False


# =============================================================================
# has_entitlement
# =============================================================================


def test_active_entitlement_is_entitled():
    assert has_entitlement(premium_info(), now=NOW) is True


def test_expired_two_days_ago_is_entitled_through_grace():
    info = _expired(2)
    assert has_entitlement(info, now=NOW) is True
    assert grace_period(info, now=NOW).days_remaining == 1


def test_expired_ten_days_ago_is_not_entitled():
    assert has_entitlement(_expired(10), now=NOW) is False


def test_missing_entitlement_is_not_entitled():
    other = CustomerInfo(entitlements={"pro": EntitlementInfo(identifier="pro", is_active=True)})
    assert has_entitlement(other, now=NOW) is False
    assert has_entitlement(other, entitlement_id="pro", now=NOW) is True
    assert has_entitlement(None, now=NOW) is False


# =============================================================================
# Offline receipt validation
# =============================================================================


def _receipt(age: timedelta, *, is_active: bool = True) -> PurchaseReceipt:
    return PurchaseReceipt(customer_info=premium_info(is_active=is_active), stored_at=NOW - age)


@pytest.mark.parametrize("age", [timedelta(0), timedelta(days=15), timedelta(days=30)])
def test_fresh_active_receipt_is_valid(age):
    assert validate_receipt_offline(_receipt(age), now=NOW) is True


def test_receipt_one_second_past_staleness_ceiling_is_invalid():
    assert validate_receipt_offline(_receipt(timedelta(days=30, seconds=1)), now=NOW) is False


def test_inactive_receipt_is_invalid_even_when_fresh():
    assert validate_receipt_offline(_receipt(timedelta(days=1), is_active=False), now=NOW) is False


def test_absent_receipt_or_entitlement_is_invalid():
    assert validate_receipt_offline(None, now=NOW) is False
    empty = PurchaseReceipt(customer_info=CustomerInfo(), stored_at=NOW)
    assert validate_receipt_offline(empty, now=NOW) is False


# =============================================================================
# entitlement_status
# =============================================================================


def test_status_for_active_entitlement_counts_days_to_expiry():
    status = entitlement_status(premium_info(expires_in=timedelta(days=9, hours=1)), now=NOW)

    assert status.is_active is True
    assert status.in_grace_period is False
    assert status.source is StatusSource.ENTITLEMENT
    assert status.days_remaining == 10


def test_status_for_grace_period():
    status = entitlement_status(_expired(1), now=NOW)

    assert status.is_active is True
    assert status.in_grace_period is True
    assert status.days_remaining == 2
    assert status.source is StatusSource.GRACE


def test_status_for_expired_entitlement_keeps_expiration_date():
    info = _expired(10)
    status = entitlement_status(info, now=NOW)

    assert status.is_active is False
    assert status.source is StatusSource.NONE
    assert status.expiration_date == info.entitlement("premium").expiration_date


# =============================================================================
# Naive datetimes
# =============================================================================


def test_naive_now_is_treated_as_utc():
    naive = NOW.replace(tzinfo=None)

    assert grace_period(_expired(1), now=naive).days_remaining == 2
    assert has_entitlement(_expired(2), now=naive) is True
    assert validate_receipt_offline(_receipt(timedelta(days=1)), now=naive) is True
    assert entitlement_status(premium_info(expires_in=timedelta(days=9, hours=1)), now=naive).days_remaining == 10
