"""Durable FIFO queue of mutations waiting to reach the backend."""

import logging
from pathlib import Path
from typing import Any

from cropcare.core.constants import STORAGE_VERSION, CacheLimits
from cropcare.core.ids import timestamped_id
from cropcare.core.timeutils import Clock, now_ms
from cropcare.models.storage import EntityType, OperationAction, PendingOperation, QueueSnapshot
from cropcare.storage.base import BaseStore

logger = logging.getLogger(__name__)


class PendingQueue(BaseStore):
    """Pending-operation queue persisted as one versioned snapshot.

    Every call reads and rewrites the snapshot inside a DiskCache transaction, so
    the queue on disk always matches what the last call returned.
    """

    SNAPSHOT_KEY = "pending_sync"

    def __init__(
        self,
        root: Path,
        size_limit: int = CacheLimits.STORAGE_SIZE_LIMIT,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(root, "queue", size_limit=size_limit, clock=clock)

    def _load(self) -> QueueSnapshot:
        return self._read(self.SNAPSHOT_KEY, QueueSnapshot) or QueueSnapshot(version=STORAGE_VERSION)

    def enqueue(self, entity_type: EntityType, action: OperationAction, payload: Any) -> str:
        """Append an operation with a zero retry count.

        Returns:
            The new operation id

        Raises:
            StorageQuotaExceededError: If the queue cannot be persisted
        """
        operation = PendingOperation(
            id=timestamped_id(self.clock),
            entity_type=entity_type,
            action=action,
            payload=payload,
            enqueued_at_ms=self.clock(),
        )
        with self.cache.transact():
            snapshot = self._load()
            snapshot.operations.append(operation)
            self._write(self.SNAPSHOT_KEY, snapshot)
        logger.info(f"Queued {entity_type.value}/{action.value} operation {operation.id}")
        return operation.id

    def list(self) -> list[PendingOperation]:
        """All operations in insertion order."""
        return self._load().operations

    def get(self, operation_id: str) -> PendingOperation | None:
        return next((op for op in self.list() if op.id == operation_id), None)

    def remove(self, operation_id: str) -> bool:
        """Delete one operation.

        Returns:
            True if it was in the queue
        """
        with self.cache.transact():
            snapshot = self._load()
            remaining = [op for op in snapshot.operations if op.id != operation_id]
            if len(remaining) == len(snapshot.operations):
                return False
            snapshot.operations = remaining
            self._write(self.SNAPSHOT_KEY, snapshot)
        return True

    def bump_retry(self, operation_id: str) -> int | None:
        """Increment an operation's retry counter in place.

        Returns:
            The new retry count, or None if the operation is gone
        """
        with self.cache.transact():
            snapshot = self._load()
            for op in snapshot.operations:
                if op.id == operation_id:
                    op.retry_count += 1
                    self._write(self.SNAPSHOT_KEY, snapshot)
                    return op.retry_count
        return None

    def count(self) -> int:
        return len(self.list())

    def clear(self) -> None:
        self.delete_item(self.SNAPSHOT_KEY)
