"""User preference reads and updates."""

import logging

from cropcare.api.backend import Backend
from cropcare.core.constants import Tables
from cropcare.exceptions import TransientNetworkError
from cropcare.models.preferences import PreferencesUpdate, UserPreferences
from cropcare.models.storage import EntityType, OperationAction
from cropcare.services.translation import check_language
from cropcare.storage.cache import CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)


class PreferencesService:
    """Preferences for one user, created with defaults on first read."""

    def __init__(self, backend: Backend, cache: LocalCache, queue: PendingQueue, monitor: NetworkMonitor) -> None:
        self.backend = backend
        self.cache = cache
        self.queue = queue
        self.monitor = monitor

    def _cached(self, user_id: str) -> UserPreferences:
        cached = self.cache.get(user_key(CacheKeys.USER_PREFERENCES, user_id))
        if isinstance(cached, dict):
            return UserPreferences.model_validate(cached)
        return UserPreferences(user_id=user_id)

    def _store(self, preferences: UserPreferences) -> None:
        self.cache.set(user_key(CacheKeys.USER_PREFERENCES, preferences.user_id), preferences.model_dump(mode="json"))

    async def get(self, user_id: str) -> UserPreferences:
        if not self.monitor.is_online:
            return self._cached(user_id)
        try:
            rows = await self.backend.select(Tables.PREFERENCES, {"user_id": user_id}, limit=1)
            row = rows[0] if rows else await self.backend.insert(Tables.PREFERENCES, {"user_id": user_id, "language": "en"})
        except TransientNetworkError as e:
            logger.warning(f"Using cached preferences: {e}")
            return self._cached(user_id)
        preferences = UserPreferences.model_validate(row)
        self._store(preferences)
        return preferences

    async def update(self, user_id: str, update: PreferencesUpdate) -> UserPreferences:
        """Apply a partial update; notification settings are merged, not replaced.

        Offline the update is applied to the cached copy and queued.

        Raises:
            ValidationError: For an unsupported language
        """
        check_language("language", update.language)
        values = update.model_dump(exclude_none=True, exclude={"notification_settings"})

        current = await self.get(user_id)
        if update.notification_settings is not None:
            values["notification_settings"] = current.notification_settings.merge(update.notification_settings).model_dump()
        updated = UserPreferences.model_validate({**current.model_dump(), **values})

        if self.monitor.is_online:
            try:
                rows = await self.backend.update(Tables.PREFERENCES, {"user_id": user_id}, values)
                self.cache.invalidate(EntityType.PREFERENCE, user_id)
                return UserPreferences.model_validate(rows[0]) if rows else updated
            except TransientNetworkError as e:
                logger.warning(f"Preference update deferred: {e}")

        self._store(updated)
        self.queue.enqueue(EntityType.PREFERENCE, OperationAction.UPDATE, {"user_id": user_id, **values})
        return updated
