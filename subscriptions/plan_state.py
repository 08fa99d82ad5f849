"""
Local plan catalog, trial window and reminder bookkeeping.

State lives in the secure store under fixed keys:
- app_trial_start        -> ISO timestamp of the first launch
- app_subscription_plan  -> activated plan id
- app_subscription_end   -> ISO timestamp when the activated plan lapses
- app_last_reminder      -> ISO date the upgrade reminder was last shown
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from .config import TRIAL_DURATION_DAYS
from .errors import InvalidPlanError
from .models import SubscriptionPlan, days_until, parse_timestamp
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

TRIAL_START_KEY = "app_trial_start"
SUBSCRIPTION_PLAN_KEY = "app_subscription_plan"
SUBSCRIPTION_END_KEY = "app_subscription_end"
LAST_REMINDER_KEY = "app_last_reminder"

STORAGE_KEYS = (TRIAL_START_KEY, SUBSCRIPTION_PLAN_KEY, SUBSCRIPTION_END_KEY, LAST_REMINDER_KEY)

SUBSCRIPTION_PLANS: Tuple[SubscriptionPlan, ...] = (
    SubscriptionPlan(
        id="monthly",
        name="Monthly",
        price=2.15,
        duration_days=30,
        features=("Unlimited menu items", "Basic analytics", "Customer support"),
    ),
    SubscriptionPlan(
        id="quarterly",
        name="3 Months",
        price=6.0,
        duration_days=90,
        savings="Save $0.45",
        popular=True,
        features=("Unlimited menu items", "Advanced analytics", "Priority support"),
    ),
    SubscriptionPlan(
        id="yearly",
        name="12 Months",
        price=24.0,
        duration_days=365,
        savings="Best Value",
        features=("Unlimited menu items", "Advanced analytics", "Priority support", "Custom branding"),
    ),
)


def get_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    for plan in SUBSCRIPTION_PLANS:
        if plan.id == plan_id:
            return plan
    return None


@dataclass(frozen=True)
class LocalPlanStatus:
    is_trial_active: bool = False
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    days_remaining: int = 0
    current_plan: Optional[str] = None
    subscription_end_date: Optional[datetime] = None


class LocalPlanStore:
    """Trial and locally activated plan state."""

    def __init__(self, store: SecureStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _get_timestamp(self, key: str) -> Optional[datetime]:
        raw = await self._store.get_decrypted_item(key)
        try:
            return parse_timestamp(raw)
        except (TypeError, ValueError):
            logger.warning("Stored timestamp is malformed", extra={"key": key})
            return None

    async def initialize_trial(self) -> None:
        """Stamp the trial start once; later calls are no-ops."""
        if await self._store.get_decrypted_item(TRIAL_START_KEY):
            return
        started = self._clock()
        await self._store.set_encrypted_item(TRIAL_START_KEY, started.isoformat())
        logger.info("Trial started", extra={"trial_start": started.isoformat()})

    async def get_local_status(
        self, now: Optional[datetime] = None, *, honor_trial: bool = True
    ) -> LocalPlanStatus:
        compare_at = now or self._clock()
        trial_start = await self._get_timestamp(TRIAL_START_KEY)
        plan_id = await self._store.get_decrypted_item(SUBSCRIPTION_PLAN_KEY)
        subscription_end = await self._get_timestamp(SUBSCRIPTION_END_KEY)

        trial_end = (
            trial_start + timedelta(days=TRIAL_DURATION_DAYS) if trial_start is not None else None
        )

        if plan_id and subscription_end is not None and subscription_end > compare_at:
            return LocalPlanStatus(
                is_trial_active=False,
                trial_start_date=trial_start,
                trial_end_date=trial_end,
                days_remaining=days_until(subscription_end, compare_at),
                current_plan=str(plan_id),
                subscription_end_date=subscription_end,
            )

        if trial_end is None:
            return LocalPlanStatus(subscription_end_date=subscription_end)

        remaining = days_until(trial_end, compare_at)
        trial_active = honor_trial and remaining > 0
        return LocalPlanStatus(
            is_trial_active=trial_active,
            trial_start_date=trial_start,
            trial_end_date=trial_end,
            days_remaining=remaining if trial_active else 0,
            current_plan=None,
            subscription_end_date=subscription_end,
        )

    async def activate(self, plan_id: str) -> SubscriptionPlan:
        """
        Activate a catalog plan starting now.

        Raises:
            InvalidPlanError: plan_id is not in the catalog
        """
        plan = get_plan(plan_id)
        if plan is None:
            raise InvalidPlanError(plan_id)

        end = self._clock() + timedelta(days=plan.duration_days)
        await self._store.set_encrypted_item(SUBSCRIPTION_PLAN_KEY, plan.id)
        await self._store.set_encrypted_item(SUBSCRIPTION_END_KEY, end.isoformat())
        logger.info("Plan activated", extra={"plan_id": plan.id, "subscription_end": end.isoformat()})
        return plan

    async def last_reminder_date(self) -> Optional[date]:
        raw = await self._store.get_decrypted_item(LAST_REMINDER_KEY)
        if not raw:
            return None
        try:
            return date.fromisoformat(str(raw))
        except ValueError:
            return None

    async def mark_reminder_shown(self) -> None:
        await self._store.set_encrypted_item(LAST_REMINDER_KEY, self._clock().date().isoformat())

    async def reset(self) -> None:
        for key in STORAGE_KEYS:
            await self._store.remove_item(key)
        logger.info("Local plan state reset")
