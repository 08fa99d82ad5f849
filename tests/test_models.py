import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from subscriptions.config import BillingConfig, StorageConfig
from subscriptions.errors import (
    ErrorKind,
    ProviderError,
    PurchaseFailureReason,
    classify_error,
    failure_reason_for,
)
from subscriptions.models import (
    CustomerInfo,
    PurchaseReceipt,
    PurchaseResult,
    days_until,
    parse_timestamp,
)

from .fakes import NOW


class TestParseTimestamp:

    def test_iso_with_z_suffix(self):
        assert parse_timestamp("2026-03-01T12:00:00Z") == NOW

    def test_naive_iso_is_utc(self):
        assert parse_timestamp("2026-03-01T12:00:00").tzinfo is not None

    def test_epoch_milliseconds(self):
        assert parse_timestamp(int(NOW.timestamp() * 1000)) == NOW

    def test_empty_is_none(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestCustomerInfo:

    def test_from_wire_format(self):
        info = CustomerInfo.from_dict({
            "entitlements": {
                "premium": {"isActive": True, "expirationDate": "2026-03-21T12:00:00Z"},
                "broken": "not an object",
            },
            "appUserId": "user-1",
        })

        premium = info.entitlement("premium")
        assert premium.is_active is True
        assert premium.expiration_date == NOW + timedelta(days=20)
        assert info.entitlement("broken") is None
        assert info.app_user_id == "user-1"

    def test_entitlements_are_read_only(self):
        info = CustomerInfo.from_dict({"entitlements": {}})

        with pytest.raises(TypeError):
            info.entitlements["premium"] = None

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            CustomerInfo.from_dict(["premium"])

    def test_receipt_requires_stored_at(self):
        with pytest.raises(ValueError):
            PurchaseReceipt.from_dict({"customerInfo": {}})


def test_days_until_rounds_up_and_clamps():
    assert days_until(NOW + timedelta(hours=1), NOW) == 1
    assert days_until(NOW + timedelta(days=2), NOW) == 2
    assert days_until(NOW - timedelta(days=2), NOW) == 0


def test_purchase_result_dict_omits_empty_fields():
    assert PurchaseResult(success=True).to_dict() == {"success": True}
    assert PurchaseResult.failed(PurchaseFailureReason.NETWORK, "offline").to_dict() == {
        "success": False,
        "error": "offline",
        "reason": "network",
    }


class TestClassifyError:

    @pytest.mark.parametrize(
        "exc,kind",
        [
            (ProviderError("x", code=1), ErrorKind.CANCELLED),
            (ProviderError("x", code=2), ErrorKind.NETWORK),
            (ProviderError("x", code="3"), ErrorKind.NOT_ALLOWED),
            (ProviderError("x", code=7), ErrorKind.UNKNOWN),
            (ProviderError("x"), ErrorKind.UNKNOWN),
            (asyncio.TimeoutError(), ErrorKind.NETWORK),
            (ConnectionResetError(), ErrorKind.NETWORK),
            (RuntimeError("x"), ErrorKind.UNKNOWN),
        ],
    )
    def test_classification(self, exc, kind):
        assert classify_error(exc) is kind

    def test_failure_reason_mapping(self):
        assert failure_reason_for(ErrorKind.NETWORK) is PurchaseFailureReason.NETWORK
        assert failure_reason_for(ErrorKind.UNKNOWN) is PurchaseFailureReason.UNKNOWN

    def test_provider_error_dict_carries_code(self):
        assert ProviderError("offline", code=2).to_dict() == {
            "error": "PROVIDER_ERROR",
            "message": "offline",
            "code": 2,
        }


class TestConfig:

    def test_billing_config_from_env(self, monkeypatch):
        monkeypatch.setenv("BILLING_PLATFORM", "iOS")
        monkeypatch.setenv("REVENUECAT_IOS_API_KEY", "appl_key")
        monkeypatch.setenv("BILLING_PROVIDER_TIMEOUT_SECONDS", "12")

        config = BillingConfig.from_env()

        assert config.platform == "ios"
        assert config.api_key_for_platform() == "appl_key"
        assert config.timeout_seconds == 12.0

    def test_unknown_platform_has_no_key(self):
        assert BillingConfig(platform="web", android_api_key="goog").api_key_for_platform() is None

    def test_storage_config_from_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.delenv("APP_IDENTIFIER", raising=False)

        config = StorageConfig.from_env()

        assert config.redis_url == "redis://cache:6379/1"
        assert config.app_identifier == "foodcart360-a8453"


def test_aware_datetime_passthrough():
    moment = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp(moment) is moment
