"""Local durable storage for CropCare."""

from cropcare.storage.base import BaseStore
from cropcare.storage.cache import ENTITY_CACHE_KEYS, CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.storage.translations import TranslationStore

__all__ = [
    "ENTITY_CACHE_KEYS",
    "BaseStore",
    "CacheKeys",
    "LocalCache",
    "PendingQueue",
    "TranslationStore",
    "user_key",
]
