import pytest

from subscriptions.config import BillingConfig
from subscriptions.encryption import StoreEncryptor, derive_encryption_key
from subscriptions.secure_store import SecureStore
from subscriptions.tiers import MemoryTier

from .fakes import TEST_APP_ID, TEST_SALT, FakeBillingProvider, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def encryptor() -> StoreEncryptor:
    return StoreEncryptor(derive_encryption_key(TEST_APP_ID, TEST_SALT))


@pytest.fixture
def memory_tier() -> MemoryTier:
    return MemoryTier()


@pytest.fixture
def secure_store(memory_tier, encryptor) -> SecureStore:
    return SecureStore(memory_tier, encryptor)


@pytest.fixture
def billing_config() -> BillingConfig:
    return BillingConfig(platform="android", android_api_key="goog_test_key", timeout_seconds=5)


@pytest.fixture
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()
