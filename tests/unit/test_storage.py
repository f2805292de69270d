# =============================================================================
# tests/unit/test_storage.py
# Unit tests for the local cache, pending queue and translation store
# =============================================================================

from datetime import timedelta

import pytest

from cropcare.core.constants import STORAGE_PREFIX
from cropcare.exceptions import StorageQuotaExceededError
from cropcare.models.storage import EntityType, OperationAction
from cropcare.storage.cache import CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.storage.translations import TranslationStore


class TestLocalCache:
    """Test expiring key/value cache"""

    def test_round_trip_before_expiry(self, cache, clock):
        """A stored value is returned until its expiry"""
        cache.set("analyses_user-1", [{"id": "a1"}], ttl=timedelta(minutes=5))
        clock.advance(5 * 60 * 1000 - 1)

        assert cache.get("analyses_user-1") == [{"id": "a1"}]

    def test_expired_entry_is_absent_and_stays_absent(self, cache, clock):
        """Reading an expired entry deletes it; reading again is still absent"""
        cache.set("weather_1.00_2.00", {"t": 30}, ttl=timedelta(seconds=1))
        clock.advance(1000)

        assert cache.get("weather_1.00_2.00") is None
        assert cache.get("weather_1.00_2.00") is None
        assert not cache.exists("weather_1.00_2.00")

    def test_set_replaces_previous_value(self, cache):
        """Writing the same key overwrites the previous entry"""
        cache.set("profile_user-1", {"name": "old"})
        cache.set("profile_user-1", {"name": "new"})

        assert cache.get("profile_user-1") == {"name": "new"}
        assert cache.get_cache_size() == 1

    def test_default_ttl_is_seven_days(self, cache, clock):
        """Entries without an explicit ttl live for a week"""
        cache.set("profile_user-1", {"name": "Asha"})
        entry = cache.get_entry("profile_user-1")

        assert entry.expires_at_ms - entry.stored_at_ms == 7 * 24 * 60 * 60 * 1000

    def test_sweep_removes_only_expired(self, cache, clock):
        """Sweep deletes expired entries and keeps fresh ones"""
        cache.set("short", 1, ttl=timedelta(seconds=1))
        cache.set("long", 2, ttl=timedelta(hours=1))
        clock.advance(2000)

        assert cache.sweep() == 1
        assert cache.get("long") == 2
        assert cache.get_cache_size() == 1

    def test_keys_are_namespaced(self, cache):
        """Keys are stored under the storage prefix"""
        cache.set("profile_user-1", {})

        assert STORAGE_PREFIX + "profile_user-1" in cache.cache

    def test_corrupt_record_reads_as_absent(self, cache):
        """Undecodable records are discarded"""
        cache.cache.set(STORAGE_PREFIX + "broken", "{not json")

        assert cache.get("broken") is None
        assert not cache.exists("broken")

    def test_record_from_other_version_is_discarded(self, cache, clock):
        """Records written under another schema version are discarded"""
        cache.cache.set(
            STORAGE_PREFIX + "old",
            '{"version": 0, "key": "old", "data": 1, "stored_at_ms": 0, "expires_at_ms": %d}' % (clock() + 10_000),
        )

        assert cache.get("old") is None

    def test_record_without_version_is_discarded(self, cache, clock):
        """Records with no schema version are treated as absent"""
        cache.cache.set(
            STORAGE_PREFIX + "legacy",
            '{"key": "legacy", "data": 1, "stored_at_ms": 0, "expires_at_ms": %d}' % (clock() + 10_000),
        )

        assert cache.get("legacy") is None
        assert not cache.exists("legacy")

    def test_quota_exhaustion_abandons_write(self, tmp_path, clock):
        """A write that does not fit is dropped without raising"""
        small = LocalCache(tmp_path, size_limit=10, clock=clock)
        try:
            small.set("analyses_user-1", ["x" * 100])
            assert small.get("analyses_user-1") is None
        finally:
            small.close()

    def test_invalidate_single_user(self, cache):
        """Invalidating for one user leaves other users' caches alone"""
        cache.set(user_key(CacheKeys.ANALYSES, "user-1"), [])
        cache.set(user_key(CacheKeys.ANALYSES, "user-2"), [])

        assert cache.invalidate(EntityType.ANALYSIS, "user-1") == 1
        assert cache.get(user_key(CacheKeys.ANALYSES, "user-2")) == []

    def test_invalidate_all_users(self, cache):
        """Invalidating without a user drops every copy of that cache only"""
        cache.set(user_key(CacheKeys.CHAT_HISTORY, "user-1"), [])
        cache.set(user_key(CacheKeys.CHAT_HISTORY, "user-2"), [])
        cache.set(user_key(CacheKeys.ANALYSES, "user-1"), [])

        assert cache.invalidate(EntityType.CHAT_MESSAGE) == 2
        assert cache.get(user_key(CacheKeys.ANALYSES, "user-1")) == []


class TestPendingQueue:
    """Test durable FIFO of pending operations"""

    def test_fifo_order(self, queue):
        """Operations are listed in insertion order with zero retries"""
        first = queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, {"message_content": "1"})
        second = queue.enqueue(EntityType.PREFERENCE, OperationAction.UPDATE, {"user_id": "u"})

        operations = queue.list()
        assert [op.id for op in operations] == [first, second]
        assert all(op.retry_count == 0 for op in operations)

    def test_bump_retry_and_remove(self, queue):
        """Retry counters increase in place; removal is by id"""
        op_id = queue.enqueue(EntityType.ANALYSIS, OperationAction.DELETE, "a1")

        assert queue.bump_retry(op_id) == 1
        assert queue.bump_retry(op_id) == 2
        assert queue.get(op_id).retry_count == 2
        assert queue.remove(op_id)
        assert not queue.remove(op_id)
        assert queue.bump_retry(op_id) is None

    def test_survives_reopen(self, tmp_path, clock):
        """The queue is read back from disk by a new instance"""
        queue = PendingQueue(tmp_path, clock=clock)
        op_id = queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, {"message_content": "hi"})
        queue.bump_retry(op_id)
        queue.close()

        reopened = PendingQueue(tmp_path, clock=clock)
        try:
            [operation] = reopened.list()
            assert operation.id == op_id
            assert operation.retry_count == 1
            assert operation.payload == {"message_content": "hi"}
        finally:
            reopened.close()

    def test_full_storage_refuses_enqueue(self, tmp_path, clock):
        """A queue that cannot persist refuses the operation"""
        queue = PendingQueue(tmp_path, size_limit=10, clock=clock)
        try:
            with pytest.raises(StorageQuotaExceededError):
                queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, {"message_content": "x" * 100})
            assert queue.count() == 0
        finally:
            queue.close()

    def test_full_queue_still_shrinks(self, queue):
        """Removing and retrying work when the queue is at its size limit"""
        ids = [
            queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, {"message_content": "x" * 2000})
            for _ in range(20)
        ]
        queue.size_limit = queue.cache.volume() + 10

        assert queue.bump_retry(ids[1]) == 1
        assert queue.remove(ids[0])
        assert queue.count() == 19
        with pytest.raises(StorageQuotaExceededError):
            queue.enqueue(EntityType.CHAT_MESSAGE, OperationAction.CREATE, {"message_content": "y" * 2000})

    def test_clear(self, queue):
        """Clearing empties the queue"""
        queue.enqueue(EntityType.ANALYSIS, OperationAction.DELETE, "a1")
        queue.clear()

        assert queue.list() == []


class TestTranslationStore:
    """Test bounded translation memo"""

    def test_evicts_least_recently_used(self, tmp_path):
        """The oldest untouched entry goes first once the bound is exceeded"""
        store = TranslationStore(tmp_path, max_entries=2)
        try:
            store.put("a", "A")
            store.put("b", "B")
            store.lookup("a")
            store.put("c", "C")

            assert "b" not in store
            assert store.lookup("a") == "A"
            assert len(store) == 2
        finally:
            store.close()

    def test_persists_across_instances(self, tmp_path):
        """Entries are reloaded by a new store"""
        store = TranslationStore(tmp_path)
        store.put("auto:hi:water", "पानी")
        store.close()

        reopened = TranslationStore(tmp_path)
        try:
            assert reopened.lookup("auto:hi:water") == "पानी"
        finally:
            reopened.close()
