"""
Wall-clock tamper detection.

Offline access windows (trial, receipt staleness) are measured against the
device clock, so winding the clock back would extend them. The guard keeps
the last observed time and flags:
- a reading more than MAX_BACKWARD_DRIFT behind it (clock wound back)
- a reading more than MAX_FORWARD_JUMP ahead of it

A backward reading leaves the stored baseline untouched, so the flag stays
up until the clock catches up again. A forward jump is flagged once and
becomes the new baseline.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .models import parse_timestamp
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

LAST_CHECK_KEY = "last_time_check"
TAMPER_COUNT_KEY = "tamper_attempts"

MAX_BACKWARD_DRIFT = timedelta(hours=1)
MAX_FORWARD_JUMP = timedelta(days=30)


class ClockGuard:
    def __init__(self, store: SecureStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def check(self) -> bool:
        """Return True if the current clock reading looks manipulated."""
        now = self._clock()
        try:
            last_check = parse_timestamp(await self._store.get_decrypted_item(LAST_CHECK_KEY))
        except (TypeError, ValueError):
            last_check = None

        if last_check is not None:
            drift = now - last_check
            if drift < -MAX_BACKWARD_DRIFT:
                logger.warning("Clock moved backwards", extra={"drift_seconds": drift.total_seconds()})
                await self._record_tamper_attempt()
                return True
            if drift > MAX_FORWARD_JUMP:
                logger.warning("Clock jumped forward", extra={"drift_seconds": drift.total_seconds()})
                await self._record_tamper_attempt()
                await self._store.set_encrypted_item(LAST_CHECK_KEY, now.isoformat())
                return True

        if last_check is None or now > last_check:
            await self._store.set_encrypted_item(LAST_CHECK_KEY, now.isoformat())
        return False

    async def tamper_attempts(self) -> int:
        raw = await self._store.get_decrypted_item(TAMPER_COUNT_KEY)
        try:
            return int(raw or 0)
        except (TypeError, ValueError):
            return 0

    async def _record_tamper_attempt(self) -> None:
        count = await self.tamper_attempts() + 1
        await self._store.set_encrypted_item(TAMPER_COUNT_KEY, count)

    async def reset(self) -> None:
        await self._store.remove_item(LAST_CHECK_KEY)
        await self._store.remove_item(TAMPER_COUNT_KEY)
