"""Bounded, persisted translation memo."""

import logging
from collections import OrderedDict
from pathlib import Path

from cropcare.core.constants import STORAGE_VERSION, CacheLimits
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import StorageQuotaExceededError
from cropcare.models.storage import TranslationSnapshot
from cropcare.storage.base import BaseStore

logger = logging.getLogger(__name__)


class TranslationStore(BaseStore):
    """Keeps the most recently used translations, oldest evicted first."""

    SNAPSHOT_KEY = "translations"

    def __init__(
        self,
        root: Path,
        max_entries: int = CacheLimits.TRANSLATION_MAX_ENTRIES,
        size_limit: int = CacheLimits.STORAGE_SIZE_LIMIT,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(root, "translations", size_limit=size_limit, clock=clock)
        self.max_entries = max_entries
        snapshot = self._read(self.SNAPSHOT_KEY, TranslationSnapshot) or TranslationSnapshot(version=STORAGE_VERSION)
        self._entries: OrderedDict[str, str] = OrderedDict(snapshot.entries)
        self._evict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def lookup(self, key: str) -> str | None:
        """Return a memoized translation and mark it most recent."""
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
        return value

    def put(self, key: str, value: str) -> None:
        """Memoize a translation and persist the bounded set."""
        self._entries[key] = value
        self._entries.move_to_end(key)
        self._evict()
        self._persist()

    def clear(self) -> None:
        self._entries.clear()
        self.delete_item(self.SNAPSHOT_KEY)

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def _persist(self) -> None:
        try:
            self._write(self.SNAPSHOT_KEY, TranslationSnapshot(version=STORAGE_VERSION, entries=dict(self._entries)))
        except StorageQuotaExceededError as e:
            # The in-memory memo stays usable for this process
            logger.warning(f"Could not save translation cache: {e}")
