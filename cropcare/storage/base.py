"""Base class for all local stores backed by DiskCache."""

import logging
import sqlite3
from abc import ABC
from pathlib import Path
from typing import TypeVar

from diskcache import Cache
from pydantic import BaseModel, ValidationError

from cropcare.core.constants import STORAGE_PREFIX, STORAGE_VERSION, CacheLimits
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import StorageQuotaExceededError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class BaseStore(ABC):
    """Abstract base class for JSON-envelope stores."""

    def __init__(
        self,
        root: Path,
        subdir: str,
        size_limit: int = CacheLimits.STORAGE_SIZE_LIMIT,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the store.

        Args:
            root: Data directory shared by all stores
            subdir: Subdirectory owned by this store
            size_limit: Bytes this store may occupy before writes are refused
            clock: Epoch-millisecond clock
        """
        store_path = Path(root) / subdir
        store_path.mkdir(parents=True, exist_ok=True)

        # Nothing is culled behind our back; quota is enforced in _write
        self.cache = Cache(str(store_path), eviction_policy="none")
        self.store_path = store_path
        self.size_limit = size_limit
        self.clock = clock

        logger.debug(f"Initialized store at {store_path}")

    @staticmethod
    def namespaced(key: str) -> str:
        return f"{STORAGE_PREFIX}{key}"

    def _write(self, key: str, model: BaseModel) -> None:
        """Serialize a model as JSON under a namespaced key.

        Only the growth over the record being replaced counts against the quota,
        so a write that shrinks a record always succeeds.

        Raises:
            StorageQuotaExceededError: If the store is full
        """
        payload = model.model_dump_json()
        growth = len(payload.encode()) - self._stored_size(key)
        if growth > 0 and self.cache.volume() + growth > self.size_limit:
            raise StorageQuotaExceededError(
                f"Local storage full writing {key}", {"key": key, "size_limit": self.size_limit}
            )
        try:
            self.cache.set(self.namespaced(key), payload)
        except (OSError, sqlite3.Error) as e:
            raise StorageQuotaExceededError(f"Local storage write failed for {key}: {e}", {"key": key}) from e

    def _stored_size(self, key: str) -> int:
        raw = self.cache.get(self.namespaced(key))
        if isinstance(raw, str):
            return len(raw.encode())
        if isinstance(raw, bytes):
            return len(raw)
        return 0

    def _read(self, key: str, model_cls: type[M]) -> M | None:
        """Load and validate a stored model.

        Undecodable records and records written under another version are deleted
        and reported as absent.
        """
        raw = self.cache.get(self.namespaced(key))
        if raw is None:
            return None
        try:
            model = model_cls.model_validate_json(raw)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable record {key}: {e}")
            self.delete_item(key)
            return None
        if getattr(model, "version", None) != STORAGE_VERSION:
            logger.info(f"Discarding record {key} written with schema version {model.version}")  # type: ignore[attr-defined]
            self.delete_item(key)
            return None
        return model

    def namespaced_keys(self) -> list[str]:
        """All keys owned by this store, without the namespace prefix."""
        return [
            key[len(STORAGE_PREFIX) :]
            for key in list(self.cache.iterkeys())
            if isinstance(key, str) and key.startswith(STORAGE_PREFIX)
        ]

    def delete_item(self, key: str) -> bool:
        """Delete a specific item.

        Returns:
            True if item was deleted, False if not found
        """
        return bool(self.cache.delete(self.namespaced(key)))

    def exists(self, key: str) -> bool:
        return self.namespaced(key) in self.cache

    def get_cache_size(self) -> int:
        """Get number of items in the store."""
        return len(self.namespaced_keys())

    def clear_cache(self) -> None:
        """Remove everything this store owns."""
        for key in self.namespaced_keys():
            self.delete_item(key)
        logger.info(f"Cleared store at {self.store_path}")

    def close(self) -> None:
        self.cache.close()
