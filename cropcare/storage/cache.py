"""Local persistent cache with per-entry expiry."""

import asyncio
import logging
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

from cropcare.core.constants import STORAGE_VERSION, CacheLimits
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import StorageQuotaExceededError
from cropcare.models.storage import CacheEntry, EntityType
from cropcare.storage.base import BaseStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=CacheLimits.DEFAULT_TTL_DAYS)


class CacheKeys(StrEnum):
    """Read caches kept for offline display."""

    ANALYSES = "analyses"
    CHAT_HISTORY = "chat_history"
    USER_PREFERENCES = "user_preferences"
    PROFILE = "profile"
    WEATHER = "weather"


ENTITY_CACHE_KEYS = {
    EntityType.ANALYSIS: CacheKeys.ANALYSES,
    EntityType.CHAT_MESSAGE: CacheKeys.CHAT_HISTORY,
    EntityType.PREFERENCE: CacheKeys.USER_PREFERENCES,
    EntityType.RECOMMENDATION: CacheKeys.ANALYSES,
}


def user_key(kind: CacheKeys, user_id: str) -> str:
    """Cache key for one user's copy of a read cache."""
    return f"{kind.value}_{user_id}"


class LocalCache(BaseStore):
    """Key/value cache of last-known server data."""

    def __init__(
        self,
        root: Path,
        size_limit: int = CacheLimits.STORAGE_SIZE_LIMIT,
        clock: Clock = now_ms,
        default_ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        super().__init__(root, "cache", size_limit=size_limit, clock=clock)
        self.default_ttl = default_ttl

    def set(self, key: str, data: Any, ttl: timedelta | None = None) -> None:
        """Store ``data`` until ``now + ttl``, replacing any previous entry.

        A full store is not an error for the caller: expired entries are swept
        and the write is abandoned.
        """
        now = self.clock()
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(
            version=STORAGE_VERSION,
            key=key,
            data=data,
            stored_at_ms=now,
            expires_at_ms=now + int(ttl.total_seconds() * 1000),
        )
        try:
            self._write(key, entry)
            logger.debug(f"Cached data with key: {key}")
        except StorageQuotaExceededError as e:
            logger.warning(f"Failed to cache data with key {key}: {e}")
            self.sweep()

    def get(self, key: str) -> Any | None:
        """Return cached data, or None when absent, expired or corrupt."""
        entry = self._read(key, CacheEntry)
        if entry is None:
            return None
        if not entry.is_valid(self.clock()):
            self.delete_item(key)
            return None
        return entry.data

    def get_entry(self, key: str) -> CacheEntry | None:
        """Like ``get`` but keeps the timestamps."""
        entry = self._read(key, CacheEntry)
        if entry is None or not entry.is_valid(self.clock()):
            if entry is not None:
                self.delete_item(key)
            return None
        return entry

    def remove(self, key: str) -> None:
        self.delete_item(key)

    def clear(self) -> None:
        self.clear_cache()

    def sweep(self) -> int:
        """Delete every expired or unreadable entry.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        removed = 0
        for key in self.namespaced_keys():
            entry = self._read(key, CacheEntry)
            # a None here means _read found it corrupt and already dropped it
            if entry is None or not entry.is_valid(now):
                if entry is not None:
                    self.delete_item(key)
                removed += 1
        if removed:
            logger.debug(f"Swept {removed} expired cache entries")
        return removed

    def invalidate(self, entity_type: EntityType, user_id: str | None = None) -> int:
        """Drop the read cache bound to an entity type, for one user or for all of them."""
        kind = ENTITY_CACHE_KEYS[entity_type]
        if user_id is not None:
            return int(self.delete_item(user_key(kind, user_id)))
        prefix = f"{kind.value}_"
        removed = 0
        for key in self.namespaced_keys():
            if key.startswith(prefix) and self.delete_item(key):
                removed += 1
        return removed

    async def run_sweeper(self, interval: float = CacheLimits.SWEEP_INTERVAL) -> None:
        """Sweep expired entries every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}")
