"""Drains the pending-operation queue and refreshes read caches."""

import asyncio
import logging

from pydantic import BaseModel

from cropcare.api.backend import Backend
from cropcare.core.constants import SyncConstants, Tables
from cropcare.exceptions import PermanentOperationFailure, StorageQuotaExceededError
from cropcare.models.storage import PendingOperation
from cropcare.storage.cache import CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.sync.dispatch import OperationDispatcher
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)


class DrainReport(BaseModel):
    """Outcome of one drain pass."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: bool = False


class SyncReconciler:
    """At-least-once delivery of queued mutations with a fixed retry ceiling.

    A drain walks the queue once in insertion order. Failures are counted on the
    operation and left in place for the next pass; no delay is computed here,
    the next trigger (reconnect or refresh tick) is the delay. Only one pass runs
    at a time and a drain requested during a pass is dropped, not deferred.
    """

    def __init__(
        self,
        queue: PendingQueue,
        cache: LocalCache,
        dispatcher: OperationDispatcher,
        backend: Backend,
        monitor: NetworkMonitor | None = None,
        user_id: str | None = None,
        max_retries: int = SyncConstants.MAX_RETRIES,
    ) -> None:
        self.queue = queue
        self.cache = cache
        self.dispatcher = dispatcher
        self.backend = backend
        self.monitor = monitor
        self.user_id = user_id
        self.max_retries = max_retries
        self._draining = False

    @property
    def is_draining(self) -> bool:
        return self._draining

    def _online(self) -> bool:
        return self.monitor is None or self.monitor.is_online

    def _remove(self, operation: PendingOperation) -> None:
        # A storage error here must not abort the rest of the pass
        try:
            self.queue.remove(operation.id)
        except StorageQuotaExceededError as e:
            logger.error(f"Could not remove operation {operation.id} from the queue: {e}")

    def _bump_retry(self, operation: PendingOperation) -> int | None:
        try:
            return self.queue.bump_retry(operation.id)
        except StorageQuotaExceededError as e:
            logger.error(f"Could not record retry for operation {operation.id}: {e}")
            return None

    def _drop(self, operation: PendingOperation, retries: int) -> None:
        self._remove(operation)
        failure = PermanentOperationFailure(
            operation.id, operation.entity_type.value, operation.action.value, retries
        )
        logger.warning(str(failure))

    async def drain(self) -> DrainReport:
        """Run one pass over the queue.

        Never raises for a failed operation; the outcome is only logged and counted.
        """
        if self._draining:
            logger.debug("Drain already in progress, skipping")
            return DrainReport(skipped=True)
        if not self._online():
            logger.debug("Offline, not draining")
            return DrainReport(skipped=True)

        self._draining = True
        report = DrainReport()
        try:
            operations = self.queue.list()
            if operations:
                logger.info(f"Syncing {len(operations)} pending operations")

            for operation in operations:
                if operation.retry_count >= self.max_retries:
                    self._drop(operation, operation.retry_count)
                    report.dropped += 1
                    continue

                report.attempted += 1
                try:
                    await self.dispatcher.dispatch(operation)
                except Exception as e:
                    report.failed += 1
                    retries = self._bump_retry(operation)
                    logger.error(f"Sync failed for operation {operation.id}: {e}")
                    if retries is not None and retries >= self.max_retries:
                        self._drop(operation, retries)
                        report.dropped += 1
                    continue

                self._remove(operation)
                self.cache.invalidate(operation.entity_type)
                report.succeeded += 1
        finally:
            self._draining = False

        if report.attempted or report.dropped:
            logger.info(
                f"Sync complete: {report.succeeded} success, {report.failed} failed, {report.dropped} dropped"
            )
        return report

    async def refresh_caches(self, user_id: str | None = None) -> None:
        """Refetch the three read caches for a user; failures are logged only."""
        user_id = user_id or self.user_id
        if not user_id or not self._online():
            return

        try:
            analyses = await self.backend.select(
                Tables.ANALYSES,
                {"user_id": user_id},
                order_by="analysis_date",
                descending=True,
                limit=SyncConstants.ANALYSES_REFRESH_LIMIT,
            )
            self.cache.set(user_key(CacheKeys.ANALYSES, user_id), analyses)
        except Exception as e:
            logger.warning(f"Failed to cache analyses for offline use: {e}")

        try:
            chat = await self.backend.select(
                Tables.CHAT,
                {"user_id": user_id},
                order_by="conversation_date",
                descending=True,
                limit=SyncConstants.CHAT_REFRESH_LIMIT,
            )
            # Newest 100, shown oldest first
            self.cache.set(user_key(CacheKeys.CHAT_HISTORY, user_id), list(reversed(chat)))
        except Exception as e:
            logger.warning(f"Failed to cache chat history for offline use: {e}")

        try:
            prefs = await self.backend.select(Tables.PREFERENCES, {"user_id": user_id}, limit=1)
            if prefs:
                self.cache.set(user_key(CacheKeys.USER_PREFERENCES, user_id), prefs[0])
        except Exception as e:
            logger.warning(f"Failed to cache preferences for offline use: {e}")

    async def run_refresher(self, interval: float = SyncConstants.REFRESH_INTERVAL) -> None:
        """Refresh caches and retry the queue every ``interval`` seconds while online."""
        while True:
            await asyncio.sleep(interval)
            if not self._online():
                continue
            await self.refresh_caches()
            await self.drain()
