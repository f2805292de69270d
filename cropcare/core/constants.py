"""
Constants and configuration values for CropCare.
"""

from enum import IntEnum, StrEnum

# Version
PACKAGE_VERSION = "0.1.0"

# Local storage
STORAGE_PREFIX = "cropcare_offline_"
STORAGE_VERSION = 1


class Buckets(StrEnum):
    """Object storage buckets."""

    CROP_IMAGES = "crop-images"
    AVATARS = "avatars"


class Tables(StrEnum):
    """Backend tables used by the client."""

    ANALYSES = "crop_analyses"
    RECOMMENDATIONS = "treatment_recommendations"
    CHAT = "chat_conversations"
    PREFERENCES = "user_preferences"


class Functions(StrEnum):
    """Serverless function names."""

    ANALYZE_CROP = "analyze-crop"
    CHAT = "chat"
    TRANSLATE = "translate"
    WEATHER = "weather"


class APIConstants(IntEnum):
    """API-related limits and constants."""

    REQUEST_TIMEOUT = 60
    SIGNED_URL_TTL = 3600
    BACKOFF_MAX_TRIES = 3
    BACKOFF_FACTOR = 1
    BACKOFF_MAX_VALUE = 10


class SyncConstants(IntEnum):
    """Queue and reconciler limits."""

    MAX_RETRIES = 3
    REFRESH_INTERVAL = 300  # seconds
    ANALYSES_REFRESH_LIMIT = 50
    CHAT_REFRESH_LIMIT = 100
    CONNECTIVITY_CHECK_INTERVAL = 15  # seconds


class CacheLimits(IntEnum):
    """Cache-related limits."""

    DEFAULT_TTL_DAYS = 7
    SWEEP_INTERVAL = 3600  # seconds
    STORAGE_SIZE_LIMIT = 50 * 1024 * 1024
    WEATHER_TTL_MINUTES = 30
    TRANSLATION_MAX_ENTRIES = 500
    TRANSLATION_KEY_PREFIX_LENGTH = 100


class ImageConstants(IntEnum):
    """Image capture and compression limits."""

    MAX_DIMENSION = 1920
    THUMBNAIL_SIZE = 300
    MAX_UPLOAD_BYTES = 10 * 1024 * 1024
    START_QUALITY = 90
    MIN_QUALITY = 40
    QUALITY_STEP = 10
    MIN_DIMENSION = 16


class SanitizeLimits(IntEnum):
    """Limits applied to inference output before it is stored or shown."""

    MAX_LIST_ITEMS = 10
    MAX_ITEM_LENGTH = 500
    MAX_PREDICTION_LENGTH = 200
    MAX_TIMELINE_LENGTH = 200


class ChatConstants(IntEnum):
    """Assistant channel limits."""

    MAX_MESSAGE_LENGTH = 5000
    HISTORY_LIMIT = 50


SUPPORTED_LANGUAGES = {
    "en": "English",
    "hi": "Hindi",
    "mr": "Marathi",
    "ta": "Tamil",
    "te": "Telugu",
    "bn": "Bengali",
    "gu": "Gujarati",
    "pa": "Punjabi",
    "kn": "Kannada",
    "ml": "Malayalam",
}

WELCOME_MESSAGE = (
    "Hello! I'm your CropCare AI assistant. How can I help you with your farming today? "
    "आपकी खेती में आज मैं कैसे मदद कर सकता हूं?"
)

CLEARED_MESSAGE = "Conversation cleared! How can I help you today? आज मैं आपकी कैसे मदद कर सकता हूं?"
