"""
Billing provider gateway.

Wraps the external billing SDK with:
- Lazy, single-flight initialization (first caller configures, others wait)
- Single-flight purchases (one purchase in flight per gateway)
- Bounded fixed-delay retry for network failures during purchase
- Explicit per-call timeout on every provider call
- Write-through of customer info to the secure store, with cache fallback
  for reads when the provider is unreachable

The in-memory customer info and initialized flag are plain instance state;
build one gateway per process (or per test) rather than sharing globals.

Usage:
    gateway = BillingGateway(provider, secure_store, config=BillingConfig.from_env())

    result = await gateway.purchase("premium_monthly")
    if not result.success:
        show(result.error)

    entitled = await gateway.has_premium_entitlement()
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from .config import (
    MAX_PURCHASE_RETRIES,
    PURCHASE_RETRY_DELAY_SECONDS,
    BillingConfig,
    StorageConfig,
)
from .errors import (
    USER_MESSAGES,
    BillingConfigurationError,
    BillingProviderError,
    ErrorKind,
    ProviderError,
    PurchaseFailureReason,
    classify_error,
    failure_reason_for,
)
from .evaluator import grace_period, has_entitlement, validate_receipt_offline
from .models import (
    CustomerInfo,
    GracePeriod,
    Offering,
    Package,
    PurchaseReceipt,
    PurchaseResult,
    RestoreResult,
)
from .provider import BillingProvider
from .secure_store import SecureStore
from .tiers import JsonFileTier

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRODUCT_NOT_FOUND_MESSAGE = "Product not found"
ENTITLEMENT_INACTIVE_MESSAGE = "Purchase completed but entitlement not active"
NO_VALID_PURCHASES_MESSAGE = "No valid purchases found"
RESTORE_FAILED_MESSAGE = "Restore failed"


def _error_message(exc: BaseException, default: str) -> str:
    if isinstance(exc, ProviderError) and exc.message:
        return exc.message
    if isinstance(exc, BillingConfigurationError):
        return exc.message
    return default


class BillingGateway:
    """Resilient call surface over a BillingProvider."""

    def __init__(
        self,
        provider: BillingProvider,
        store: SecureStore,
        *,
        config: Optional[BillingConfig] = None,
        max_retries: int = MAX_PURCHASE_RETRIES,
        retry_delay_seconds: float = PURCHASE_RETRY_DELAY_SECONDS,
        timeout_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._provider = provider
        self._store = store
        self._config = config or BillingConfig.from_env()
        self._max_retries = max_retries
        self._retry_delay_seconds = retry_delay_seconds
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else self._config.timeout_seconds
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._purchase_lock = asyncio.Lock()
        self._cached_customer_info: Optional[CustomerInfo] = None

    @property
    def entitlement_id(self) -> str:
        return self._config.entitlement_id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def cached_customer_info(self) -> Optional[CustomerInfo]:
        return self._cached_customer_info

    @property
    def store(self) -> SecureStore:
        return self._store

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._timeout_seconds)

    # =========================================================================
    # Initialization
    # =========================================================================

    async def initialize(self) -> None:
        """
        Configure the provider once.

        Raises:
            BillingConfigurationError: No API key for the configured platform
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            api_key = self._config.api_key_for_platform()
            if not api_key:
                raise BillingConfigurationError(self._config.platform)
            await self._call(self._provider.configure(api_key))
            self._initialized = True
            logger.info(
                "Billing provider initialized",
                extra={"platform": self._config.platform},
            )

    # =========================================================================
    # Purchases
    # =========================================================================

    async def purchase(self, product_id: str) -> PurchaseResult:
        """
        Purchase a product by id.

        Only network-classified failures are retried, at most max_retries
        times after the first attempt. A purchase the provider completed but
        whose entitlement is inactive is never retried.
        """
        async with self._purchase_lock:
            return await self._purchase_locked(product_id)

    async def _purchase_locked(self, product_id: str) -> PurchaseResult:
        try:
            await self.initialize()
        except Exception as exc:
            kind = classify_error(exc)
            logger.error(
                "Billing provider initialization failed before purchase",
                extra={"product_id": product_id, "error_kind": kind.value},
            )
            if isinstance(exc, BillingConfigurationError):
                return PurchaseResult.failed(PurchaseFailureReason.NOT_CONFIGURED, exc.message)
            return self._purchase_failure(exc, kind, attempts=0)

        attempts = 0
        while True:
            attempts += 1
            try:
                package = await self._find_package(product_id)
                if package is None:
                    logger.warning("Product not found in offerings", extra={"product_id": product_id})
                    return PurchaseResult.failed(
                        PurchaseFailureReason.PRODUCT_NOT_FOUND,
                        PRODUCT_NOT_FOUND_MESSAGE,
                        attempts,
                    )
                info = await self._call(self._provider.purchase_package(package))
            except Exception as exc:
                kind = classify_error(exc)
                if kind is ErrorKind.NETWORK and attempts <= self._max_retries:
                    logger.info(
                        "Retrying purchase after network error",
                        extra={"product_id": product_id, "retry": attempts},
                    )
                    await asyncio.sleep(self._retry_delay_seconds)
                    continue
                return self._purchase_failure(exc, kind, attempts)

            return await self._complete_purchase(product_id, info, attempts)

    async def _complete_purchase(
        self, product_id: str, info: CustomerInfo, attempts: int
    ) -> PurchaseResult:
        entitlement = info.entitlement(self.entitlement_id)
        if entitlement is None or not entitlement.is_active:
            logger.error(
                "Purchase completed but entitlement not active",
                extra={"product_id": product_id, "entitlement_id": self.entitlement_id},
            )
            return PurchaseResult.failed(
                PurchaseFailureReason.ENTITLEMENT_INACTIVE,
                ENTITLEMENT_INACTIVE_MESSAGE,
                attempts,
            )

        self._cached_customer_info = info
        await self._store.set_customer_info(info)
        await self._store.set_purchase_receipt(
            PurchaseReceipt(customer_info=info, stored_at=self._clock())
        )
        logger.info(
            "Purchase succeeded",
            extra={"product_id": product_id, "attempts": attempts},
        )
        return PurchaseResult(success=True, attempts=attempts)

    def _purchase_failure(self, exc: BaseException, kind: ErrorKind, attempts: int) -> PurchaseResult:
        if kind is ErrorKind.UNKNOWN:
            message = _error_message(exc, USER_MESSAGES[ErrorKind.UNKNOWN])
        else:
            message = USER_MESSAGES[kind]
        logger.warning(
            "Purchase failed",
            extra={
                "error_kind": kind.value,
                "error_type": type(exc).__name__,
                "attempts": attempts,
            },
        )
        return PurchaseResult.failed(failure_reason_for(kind), message, attempts)

    async def restore_purchases(self) -> RestoreResult:
        """
        Restore purchases and re-validate the result offline.

        A restore without any currently valid entitlement is reported as
        NO_VALID_PURCHASES, not as an error.
        """
        try:
            await self.initialize()
            info = await self._call(self._provider.restore_purchases())
        except Exception as exc:
            kind = classify_error(exc)
            logger.warning(
                "Restore failed",
                extra={"error_kind": kind.value, "error_type": type(exc).__name__},
            )
            reason = (
                PurchaseFailureReason.NOT_CONFIGURED
                if isinstance(exc, BillingConfigurationError)
                else failure_reason_for(kind)
            )
            return RestoreResult(
                success=False,
                error=_error_message(exc, RESTORE_FAILED_MESSAGE),
                reason=reason,
            )

        self._cached_customer_info = info
        await self._store.set_customer_info(info)

        receipt = PurchaseReceipt(customer_info=info, stored_at=self._clock())
        if not validate_receipt_offline(receipt, entitlement_id=self.entitlement_id, now=self._clock()):
            logger.info("Restore found no valid purchases")
            return RestoreResult(
                success=False,
                error=NO_VALID_PURCHASES_MESSAGE,
                reason=PurchaseFailureReason.NO_VALID_PURCHASES,
            )

        await self._store.set_purchase_receipt(receipt)
        logger.info("Purchases restored")
        return RestoreResult(success=True)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_customer_info(self) -> Optional[CustomerInfo]:
        """Live customer info, else the in-memory copy, else the persisted copy."""
        try:
            await self.initialize()
            info = await self._call(self._provider.get_customer_info())
        except Exception as exc:
            logger.warning(
                "Customer info fetch failed, using cached value",
                extra={
                    "error_kind": classify_error(exc).value,
                    "error_type": type(exc).__name__,
                    "has_memory_cache": self._cached_customer_info is not None,
                },
            )
            if self._cached_customer_info is not None:
                return self._cached_customer_info
            return await self._store.get_customer_info()

        self._cached_customer_info = info
        await self._store.set_customer_info(info)
        return info

    async def get_offerings(self) -> List[Offering]:
        try:
            await self.initialize()
            return await self._fetch_offerings()
        except Exception as exc:
            logger.warning(
                "Offerings fetch failed",
                extra={"error_kind": classify_error(exc).value, "error_type": type(exc).__name__},
            )
            return []

    async def _fetch_offerings(self) -> List[Offering]:
        offerings = await self._call(self._provider.get_offerings())
        return list(offerings.values()) if offerings else []

    async def _find_package(self, product_id: str) -> Optional[Package]:
        for offering in await self._fetch_offerings():
            package = offering.find_package(product_id)
            if package is not None:
                return package
        return None

    async def has_premium_entitlement(self) -> bool:
        info = await self.get_customer_info()
        return has_entitlement(info, entitlement_id=self.entitlement_id, now=self._clock())

    async def check_grace_period(self) -> GracePeriod:
        info = await self.get_customer_info()
        return grace_period(info, entitlement_id=self.entitlement_id, now=self._clock())

    async def validate_purchase_receipt(self) -> bool:
        receipt = await self._store.get_purchase_receipt()
        return validate_receipt_offline(receipt, entitlement_id=self.entitlement_id, now=self._clock())

    async def receipt_customer_info(self) -> Optional[CustomerInfo]:
        """Customer info from the persisted receipt, only if it passes offline validation."""
        receipt = await self._store.get_purchase_receipt()
        if not validate_receipt_offline(receipt, entitlement_id=self.entitlement_id, now=self._clock()):
            return None
        return receipt.customer_info

    async def get_expiration_date(self) -> Optional[datetime]:
        info = await self.get_customer_info()
        if info is None:
            return None
        entitlement = info.entitlement(self.entitlement_id)
        return entitlement.expiration_date if entitlement is not None else None

    # =========================================================================
    # Account
    # =========================================================================

    async def log_in(self, user_id: str) -> None:
        if not str(user_id).strip():
            raise ValueError("user_id is required")
        await self.initialize()
        try:
            await self._call(self._provider.log_in(user_id))
        except Exception as exc:
            logger.error("Billing provider login failed", extra={"error_type": type(exc).__name__})
            raise BillingProviderError("log_in", _error_message(exc, "Login to billing provider failed")) from exc

    async def log_out(self) -> None:
        await self.initialize()
        try:
            await self._call(self._provider.log_out())
        except Exception as exc:
            logger.error("Billing provider logout failed", extra={"error_type": type(exc).__name__})
            raise BillingProviderError("log_out", _error_message(exc, "Logout from billing provider failed")) from exc
        self._cached_customer_info = None
        await self._store.set_customer_info(None)


def build_gateway(
    provider: BillingProvider,
    store: Optional[SecureStore] = None,
    *,
    config: Optional[BillingConfig] = None,
    storage_config: Optional[StorageConfig] = None,
    **kwargs,
) -> BillingGateway:
    """
    Build a gateway from environment configuration.

    Without an explicit store, customer info and receipts are persisted
    encrypted in the durable file tier from StorageConfig.
    """
    if store is None:
        storage_config = storage_config or StorageConfig.from_env()
        store = SecureStore.from_config(JsonFileTier(storage_config.profile_store_dir), storage_config)
    return BillingGateway(provider, store, config=config or BillingConfig.from_env(), **kwargs)
