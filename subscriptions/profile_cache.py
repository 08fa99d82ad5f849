"""
Multi-tier user profile cache.

Tiers are read in the order they were given (primary first). Whichever
tier returns a matching record first wins. A hit below the primary tier
schedules a background copy into the primary tier so the next read is served
from there; the read itself never waits for that copy. A later set or clear
for the same uid supersedes any copy still pending from an earlier read.

Writes go to every tier concurrently. A failing tier is logged and skipped;
at-least-one-tier durability is the guarantee, not all-tier durability.

Key schema:
- user_profile_{uid} -> JSON profile object
"""

import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import PROFILE_KEY_PREFIX, StorageConfig
from .tiers import JsonDocumentTier, JsonFileTier, KeyValueTier, MemoryTier, RedisTier

logger = logging.getLogger(__name__)

_VALID_UID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def is_valid_uid(uid: Any) -> bool:
    return isinstance(uid, str) and bool(_VALID_UID.match(uid))


def profile_key(uid: str) -> str:
    return f"{PROFILE_KEY_PREFIX}{uid}"


def _normalize(uid: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    profile = {"id": uid, **record}
    profile["id"] = uid
    profile["profileComplete"] = bool(record.get("profileComplete"))
    return profile


class ProfileCache:
    """Reads and writes profiles across an ordered list of tiers."""

    def __init__(self, tiers: Sequence[KeyValueTier]):
        if not tiers:
            raise ValueError("at least one tier is required")
        self._tiers: List[KeyValueTier] = list(tiers)
        self._migrations: Dict[str, asyncio.Task] = {}
        self._versions: Dict[str, int] = {}

    @property
    def tiers(self) -> List[KeyValueTier]:
        return list(self._tiers)

    async def get_profile(self, uid: str) -> Optional[Dict[str, Any]]:
        if not is_valid_uid(uid):
            logger.warning("get_profile called with invalid uid")
            return None

        key = profile_key(uid)
        version = self._versions.get(uid, 0)
        for index, tier in enumerate(self._tiers):
            record = await self._read_tier(tier, key, uid)
            if record is None:
                continue

            profile = _normalize(uid, record)
            logger.debug("Profile found", extra={"uid": uid, "tier": tier.name})
            if index > 0:
                self._schedule_migration(uid, json.dumps(profile), version)
            return profile

        logger.debug("No profile found", extra={"uid": uid})
        return None

    async def set_profile(self, uid: str, data: Mapping[str, Any]) -> bool:
        """
        Write a profile to every tier.

        Returns:
            True if at least one tier stored it
        """
        if not is_valid_uid(uid) or not data:
            logger.warning("set_profile called with invalid parameters")
            return False

        profile = {
            **data,
            "id": uid,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
            "lastSynced": int(time.time() * 1000),
        }
        payload = json.dumps(profile)
        key = profile_key(uid)
        await self._supersede_migration(uid)

        results = await asyncio.gather(
            *(tier.set(key, payload) for tier in self._tiers),
            return_exceptions=True,
        )

        stored = 0
        for tier, result in zip(self._tiers, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Profile tier write failed",
                    extra={"uid": uid, "tier": tier.name, "error_type": type(result).__name__},
                )
            else:
                stored += 1

        if stored == 0:
            logger.error("Profile could not be saved to any tier", extra={"uid": uid})
            return False

        logger.info(
            "Profile saved",
            extra={"uid": uid, "tiers_written": stored, "tiers_total": len(self._tiers)},
        )
        return True

    async def clear_profile(self, uid: str) -> None:
        if not is_valid_uid(uid):
            return

        key = profile_key(uid)
        await self._supersede_migration(uid)
        results = await asyncio.gather(
            *(tier.remove(key) for tier in self._tiers),
            return_exceptions=True,
        )
        for tier, result in zip(self._tiers, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Profile tier clear failed",
                    extra={"uid": uid, "tier": tier.name, "error_type": type(result).__name__},
                )

    async def check_health(self, uid: str) -> bool:
        return await self.get_profile(uid) is not None

    async def wait_for_migrations(self) -> None:
        """Join every in-flight write-through migration."""
        while self._migrations:
            await asyncio.gather(*list(self._migrations.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read_tier(self, tier: KeyValueTier, key: str, uid: str) -> Optional[Mapping[str, Any]]:
        try:
            raw = await tier.get(key)
        except Exception:
            logger.warning(
                "Profile tier read failed",
                extra={"uid": uid, "tier": tier.name},
                exc_info=True,
            )
            return None
        if not raw:
            return None

        try:
            record = json.loads(raw)
        except ValueError:
            logger.warning("Profile entry is not valid JSON", extra={"uid": uid, "tier": tier.name})
            return None
        if not isinstance(record, dict):
            return None
        if record.get("id", uid) != uid:
            return None
        return record

    def _schedule_migration(self, uid: str, payload: str, version: int) -> None:
        if uid in self._migrations:
            return
        task = asyncio.get_running_loop().create_task(self._migrate(uid, payload, version))
        self._migrations[uid] = task
        task.add_done_callback(lambda _: self._migrations.pop(uid, None))

    async def _supersede_migration(self, uid: str) -> None:
        """Invalidate reads taken so far and let an in-flight migration land first."""
        self._versions[uid] = self._versions.get(uid, 0) + 1
        task = self._migrations.get(uid)
        if task is not None:
            await asyncio.wait([task])

    async def _migrate(self, uid: str, payload: str, version: int) -> None:
        primary = self._tiers[0]
        if self._versions.get(uid, 0) != version:
            logger.debug("Profile migration superseded", extra={"uid": uid, "tier": primary.name})
            return
        try:
            await primary.set(profile_key(uid), payload)
            logger.info("Profile migrated to primary tier", extra={"uid": uid, "tier": primary.name})
        except Exception:
            logger.warning(
                "Profile migration failed",
                extra={"uid": uid, "tier": primary.name},
                exc_info=True,
            )


def build_profile_cache(config: Optional[StorageConfig] = None) -> ProfileCache:
    """
    Default tier order: durable file store, Redis service store, legacy JSON document.

    Without REDIS_URL the service tier is process-local memory.
    """
    config = config or StorageConfig.from_env()
    if config.redis_url:
        service_tier: KeyValueTier = RedisTier.from_url(config.redis_url, name="service")
    else:
        logger.warning("REDIS_URL not set; service profile tier is in-memory only")
        service_tier = MemoryTier(name="service")
    return ProfileCache([
        JsonFileTier(config.profile_store_dir, name="preferences"),
        service_tier,
        JsonDocumentTier(config.legacy_store_path, name="legacy"),
    ])
