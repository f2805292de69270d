"""Core functionality module."""

from cropcare.core.constants import STORAGE_PREFIX, STORAGE_VERSION, SUPPORTED_LANGUAGES
from cropcare.core.timeutils import Clock, now_ms

__all__ = [
    "STORAGE_PREFIX",
    "STORAGE_VERSION",
    "SUPPORTED_LANGUAGES",
    "Clock",
    "now_ms",
]
