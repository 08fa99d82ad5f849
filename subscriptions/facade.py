"""
Subscription facade: the composition root callers talk to.

On start it initializes the local trial, refreshes status immediately and
then re-evaluates every STATUS_REFRESH_INTERVAL_SECONDS in a background
task. Actions mutate persisted state and re-read status right away.

Status precedence:
    billing entitlement -> grace period -> local plan -> trial -> none

Status reads never raise; the worst case is "not entitled".

Usage:
    facade = build_subscription_facade(provider)
    await facade.start()

    status = await facade.get_status()
    if await facade.should_show_reminder():
        ...
        await facade.mark_reminder_shown()

    await facade.stop()
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from .clock_guard import ClockGuard
from .config import (
    REMINDER_TRIAL_DAYS_THRESHOLD,
    STATUS_REFRESH_INTERVAL_SECONDS,
    BillingConfig,
    StorageConfig,
)
from .evaluator import entitlement_status
from .gateway import BillingGateway, build_gateway
from .models import (
    PurchaseResult,
    RestoreResult,
    StatusSource,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .plan_state import SUBSCRIPTION_PLANS, LocalPlanStatus, LocalPlanStore
from .provider import BillingProvider
from .secure_store import SecureStore
from .tiers import KeyValueTier

logger = logging.getLogger(__name__)


def _compose_status(billing: SubscriptionStatus, local: LocalPlanStatus, tampered: bool) -> SubscriptionStatus:
    local_fields = dict(
        is_trial_active=local.is_trial_active,
        current_plan=local.current_plan,
        trial_end_date=local.trial_end_date,
        tampered=tampered,
    )
    if billing.is_active:
        return replace(billing, **local_fields)
    if local.current_plan:
        return SubscriptionStatus(
            is_active=True,
            days_remaining=local.days_remaining,
            expiration_date=local.subscription_end_date,
            source=StatusSource.PLAN,
            **local_fields,
        )
    if local.is_trial_active:
        return SubscriptionStatus(
            is_active=True,
            days_remaining=local.days_remaining,
            expiration_date=local.trial_end_date,
            source=StatusSource.TRIAL,
            **local_fields,
        )
    return SubscriptionStatus(expiration_date=billing.expiration_date, **local_fields)


class SubscriptionFacade:
    """Refresh loop plus caller actions over the gateway and local plan state."""

    def __init__(
        self,
        gateway: BillingGateway,
        plans: LocalPlanStore,
        clock_guard: Optional[ClockGuard] = None,
        *,
        refresh_interval_seconds: float = STATUS_REFRESH_INTERVAL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self._plans = plans
        self._clock_guard = clock_guard
        self._refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._status: Optional[SubscriptionStatus] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> Optional[SubscriptionStatus]:
        """Last computed status, without refreshing."""
        return self._status

    @property
    def plans(self) -> Tuple[SubscriptionPlan, ...]:
        return SUBSCRIPTION_PLANS

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> SubscriptionStatus:
        await self._plans.initialize_trial()
        status = await self.refresh()
        if not self.is_running:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll())
        return status

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval_seconds)
            await self.refresh()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def refresh(self) -> SubscriptionStatus:
        try:
            self._status = await self._evaluate()
        except Exception:
            logger.error("Subscription status refresh failed", exc_info=True)
            if self._status is None:
                self._status = SubscriptionStatus()
        return self._status

    async def _evaluate(self) -> SubscriptionStatus:
        now = self._clock()
        tampered = await self._clock_guard.check() if self._clock_guard is not None else False

        info = await self.gateway.get_customer_info()
        if info is None:
            info = await self.gateway.receipt_customer_info()
        billing = entitlement_status(info, entitlement_id=self.gateway.entitlement_id, now=now)

        local = await self._plans.get_local_status(now, honor_trial=not tampered)
        status = _compose_status(billing, local, tampered)
        logger.debug(
            "Subscription status evaluated",
            extra={"source": status.source.value, "is_active": status.is_active},
        )
        return status

    async def get_status(self) -> SubscriptionStatus:
        return await self.refresh()

    async def _current_status(self) -> SubscriptionStatus:
        return self._status if self._status is not None else await self.refresh()

    async def should_show_reminder(self) -> bool:
        status = await self._current_status()
        if status.source in (StatusSource.ENTITLEMENT, StatusSource.PLAN):
            return False
        if await self._plans.last_reminder_date() == self._clock().date():
            return False
        if status.source is StatusSource.TRIAL:
            return status.days_remaining <= REMINDER_TRIAL_DAYS_THRESHOLD
        return True

    async def is_feature_available(self) -> bool:
        return (await self._current_status()).is_active

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def activate(self, plan_id: str) -> SubscriptionStatus:
        await self._plans.activate(plan_id)
        return await self.refresh()

    async def reset(self) -> SubscriptionStatus:
        await self._plans.reset()
        return await self.refresh()

    async def mark_reminder_shown(self) -> SubscriptionStatus:
        await self._plans.mark_reminder_shown()
        return await self.refresh()

    async def purchase(self, product_id: str) -> PurchaseResult:
        result = await self.gateway.purchase(product_id)
        await self.refresh()
        return result

    async def restore_purchases(self) -> RestoreResult:
        result = await self.gateway.restore_purchases()
        await self.refresh()
        return result


def build_subscription_facade(
    provider: BillingProvider,
    *,
    billing_config: Optional[BillingConfig] = None,
    storage_config: Optional[StorageConfig] = None,
    tier: Optional[KeyValueTier] = None,
    clock: Optional[Callable[[], datetime]] = None,
    **gateway_kwargs,
) -> SubscriptionFacade:
    """
    Wire gateway, secure store, plan state and clock guard together.

    The secure store defaults to the durable file tier from StorageConfig.
    """
    store = None
    if tier is not None:
        store = SecureStore.from_config(tier, storage_config)
    gateway = build_gateway(
        provider,
        store,
        config=billing_config,
        storage_config=storage_config,
        clock=clock,
        **gateway_kwargs,
    )
    return SubscriptionFacade(
        gateway,
        LocalPlanStore(gateway.store, clock),
        ClockGuard(gateway.store, clock),
        clock=clock,
    )
