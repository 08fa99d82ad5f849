"""
Tests for the multi-tier profile cache.

Covers tier priority, write-through migration from secondary tiers,
partial-failure writes and uid validation.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from subscriptions.config import StorageConfig
from subscriptions.profile_cache import ProfileCache, build_profile_cache, is_valid_uid, profile_key
from subscriptions.tiers import JsonDocumentTier, JsonFileTier, MemoryTier

from .fakes import FailingTier, RecordingTier, SlowFirstWriteTier


@pytest.fixture
def primary():
    return RecordingTier("primary")


@pytest.fixture
def secondary():
    return MemoryTier("secondary")


@pytest.fixture
def legacy():
    return MemoryTier("legacy")


@pytest.fixture
def cache(primary, secondary, legacy):
    return ProfileCache([primary, secondary, legacy])


class TestUidValidation:

    @pytest.mark.parametrize("uid", ["abc", "user_123", "A-b_9", "x" * 128])
    def test_valid(self, uid):
        assert is_valid_uid(uid) is True

    @pytest.mark.parametrize("uid", ["", "x" * 129, "has space", "../etc", "a/b", None, 42])
    def test_invalid(self, uid):
        assert is_valid_uid(uid) is False

    @pytest.mark.asyncio
    async def test_invalid_uid_never_touches_tiers(self):
        tier = MemoryTier()
        tier.get = AsyncMock()
        tier.set = AsyncMock()
        cache = ProfileCache([tier])

        assert await cache.get_profile("../etc") is None
        assert await cache.set_profile("../etc", {"name": "x"}) is False
        await cache.clear_profile("../etc")

        tier.get.assert_not_called()
        tier.set.assert_not_called()


class TestGetProfile:

    @pytest.mark.asyncio
    async def test_primary_hit_schedules_no_migration(self, cache, primary):
        await primary.set(profile_key("u1"), json.dumps({"id": "u1", "name": "Ada"}))
        primary.writes.clear()

        profile = await cache.get_profile("u1")
        await cache.wait_for_migrations()

        assert profile["name"] == "Ada"
        assert primary.writes == []

    @pytest.mark.asyncio
    async def test_secondary_hit_migrates_to_primary(self, cache, primary, secondary):
        await secondary.set(profile_key("abc"), json.dumps({"id": "abc", "name": "Grace"}))

        profile = await cache.get_profile("abc")
        await cache.wait_for_migrations()

        assert profile["name"] == "Grace"
        migrated = json.loads(await primary.get(profile_key("abc")))
        assert migrated["name"] == "Grace"
        assert migrated["id"] == "abc"

    @pytest.mark.asyncio
    async def test_repeated_reads_migrate_once(self, cache, primary, legacy):
        await legacy.set(profile_key("abc"), json.dumps({"id": "abc"}))

        await cache.get_profile("abc")
        await cache.get_profile("abc")
        await cache.wait_for_migrations()
        await cache.get_profile("abc")
        await cache.wait_for_migrations()

        assert len(primary.writes) == 1

    @pytest.mark.asyncio
    async def test_profile_is_normalized(self, cache, secondary):
        await secondary.set(profile_key("abc"), json.dumps({"name": "No id"}))

        profile = await cache.get_profile("abc")

        assert profile["id"] == "abc"
        assert profile["profileComplete"] is False

    @pytest.mark.asyncio
    async def test_record_for_other_user_is_skipped(self, cache, primary, secondary):
        await primary.set(profile_key("abc"), json.dumps({"id": "someone-else"}))
        await secondary.set(profile_key("abc"), json.dumps({"id": "abc", "name": "Right"}))

        profile = await cache.get_profile("abc")

        assert profile["name"] == "Right"

    @pytest.mark.asyncio
    async def test_unparseable_entry_falls_through(self, cache, primary, legacy):
        await primary.set(profile_key("abc"), "{not json")
        await legacy.set(profile_key("abc"), json.dumps({"id": "abc", "name": "Legacy"}))

        assert (await cache.get_profile("abc"))["name"] == "Legacy"

    @pytest.mark.asyncio
    async def test_failing_tier_is_skipped(self, secondary):
        cache = ProfileCache([FailingTier(), secondary])
        await secondary.set(profile_key("abc"), json.dumps({"id": "abc"}))

        profile = await cache.get_profile("abc")
        await cache.wait_for_migrations()

        assert profile["id"] == "abc"

    @pytest.mark.asyncio
    async def test_absent_everywhere_is_none(self, cache):
        assert await cache.get_profile("nobody") is None
        assert await cache.check_health("nobody") is False

    @pytest.mark.asyncio
    async def test_caller_edits_are_not_migrated(self, cache, primary, secondary):
        await secondary.set(profile_key("abc"), json.dumps({"id": "abc"}))

        profile = await cache.get_profile("abc")
        profile["unsaved_edit"] = True
        await cache.wait_for_migrations()

        migrated = json.loads(await primary.get(profile_key("abc")))
        assert "unsaved_edit" not in migrated


class TestSetProfile:

    @pytest.mark.asyncio
    async def test_writes_every_tier_with_stamps(self, cache, primary, secondary, legacy):
        assert await cache.set_profile("abc", {"name": "Ada", "profileComplete": True}) is True

        for tier in (primary, secondary, legacy):
            stored = json.loads(await tier.get(profile_key("abc")))
            assert stored["id"] == "abc"
            assert stored["name"] == "Ada"
            assert "updatedAt" in stored
            assert isinstance(stored["lastSynced"], int)

        assert await cache.check_health("abc") is True

    @pytest.mark.asyncio
    async def test_succeeds_if_any_tier_succeeds(self, secondary):
        cache = ProfileCache([FailingTier("a"), secondary, FailingTier("b")])

        assert await cache.set_profile("abc", {"name": "Ada"}) is True
        assert (await cache.get_profile("abc"))["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_fails_if_every_tier_fails(self):
        cache = ProfileCache([FailingTier("a"), FailingTier("b")])

        assert await cache.set_profile("abc", {"name": "Ada"}) is False

    @pytest.mark.asyncio
    async def test_empty_data_is_rejected(self, cache, primary):
        assert await cache.set_profile("abc", {}) is False
        assert primary.writes == []

    @pytest.mark.asyncio
    async def test_caller_cannot_override_id(self, cache, primary):
        await cache.set_profile("abc", {"id": "other", "name": "Ada"})

        assert json.loads(await primary.get(profile_key("abc")))["id"] == "abc"


class TestClearProfile:

    @pytest.mark.asyncio
    async def test_clears_every_tier(self, cache, primary, secondary, legacy):
        await cache.set_profile("abc", {"name": "Ada"})

        await cache.clear_profile("abc")

        for tier in (primary, secondary, legacy):
            assert await tier.get(profile_key("abc")) is None

    @pytest.mark.asyncio
    async def test_is_best_effort(self, secondary):
        cache = ProfileCache([FailingTier(), secondary])
        await secondary.set(profile_key("abc"), json.dumps({"id": "abc"}))

        await cache.clear_profile("abc")

        assert await secondary.get(profile_key("abc")) is None


def test_requires_at_least_one_tier():
    with pytest.raises(ValueError):
        ProfileCache([])


def test_build_profile_cache_default_tier_order(tmp_path):
    config = StorageConfig(
        profile_store_dir=str(tmp_path / "prefs"),
        legacy_store_path=str(tmp_path / "legacy.json"),
    )

    cache = build_profile_cache(config)

    assert [tier.name for tier in cache.tiers] == ["preferences", "service", "legacy"]
    assert isinstance(cache.tiers[0], JsonFileTier)
    assert isinstance(cache.tiers[1], MemoryTier)
    assert isinstance(cache.tiers[2], JsonDocumentTier)


class TestMigrationOrdering:
    """A pending write-through copy never overwrites a newer set or clear."""

    @pytest.fixture
    def slow_cache(self, secondary):
        return ProfileCache([SlowFirstWriteTier("primary"), secondary])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("migration_started", [False, True])
    async def test_set_after_secondary_read_wins(self, slow_cache, secondary, migration_started):
        await secondary.set(profile_key("u1"), json.dumps({"id": "u1", "name": "old"}))

        await slow_cache.get_profile("u1")
        if migration_started:
            await asyncio.sleep(0)
        assert await slow_cache.set_profile("u1", {"name": "new"}) is True
        await slow_cache.wait_for_migrations()

        assert (await slow_cache.get_profile("u1"))["name"] == "new"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("migration_started", [False, True])
    async def test_clear_after_secondary_read_stays_cleared(self, slow_cache, secondary, migration_started):
        await secondary.set(profile_key("u1"), json.dumps({"id": "u1", "name": "old"}))

        await slow_cache.get_profile("u1")
        if migration_started:
            await asyncio.sleep(0)
        await slow_cache.clear_profile("u1")
        await slow_cache.wait_for_migrations()

        assert await slow_cache.get_profile("u1") is None
