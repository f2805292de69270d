"""Custom exceptions for CropCare."""

from enum import StrEnum
from typing import Any


class CropCareError(Exception):
    """Base exception for all CropCare errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize CropCare error.

        Args:
            message: Error message
            details: Additional error details

        """
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(CropCareError):
    """Raised when configuration is invalid or missing."""


class ValidationError(CropCareError):
    """Raised when input validation fails, before any network call."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        super().__init__(message, {"field": field, "value": value})
        self.field = field
        self.value = value


class APIError(CropCareError):
    """Base class for API-related errors."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_text: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            status_code: HTTP status code
            message: Error message
            response_text: Raw response text from API
            details: Additional error details

        """
        super().__init__(message, details)
        self.status_code = status_code
        self.response_text = response_text


class AuthenticationError(APIError):
    """Raised when authentication fails (401)."""

    def __init__(self, message: str = "Authentication failed", response_text: str | None = None) -> None:
        super().__init__(401, message, response_text)


class QuotaExceededError(APIError):
    """Raised when the AI service quota is exhausted (402)."""

    def __init__(
        self, message: str = "AI service quota exceeded. Please try again later.", response_text: str | None = None
    ) -> None:
        super().__init__(402, message, response_text)


class RateLimitError(APIError):
    """Raised when rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str = "Too many requests. Please wait a moment and try again.",
        response_text: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(429, message, response_text)
        self.retry_after = retry_after


class ServiceError(APIError):
    """Raised for server errors and any other unexpected response."""


class TransientNetworkError(CropCareError):
    """Raised when connectivity is lost mid-call."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"Network error during '{operation}': {reason}", {"operation": operation})
        self.operation = operation


class StorageQuotaExceededError(CropCareError):
    """Raised when local durable storage is full."""


class PermanentOperationFailure(CropCareError):
    """Raised when a queued mutation exhausts its retry ceiling."""

    def __init__(self, operation_id: str, entity_type: str, action: str, retries: int) -> None:
        super().__init__(
            f"Dropping {entity_type}/{action} operation {operation_id} after {retries} retries",
            {"operation_id": operation_id, "entity_type": entity_type, "action": action},
        )
        self.operation_id = operation_id


class UploadError(CropCareError):
    """Raised when an image cannot be stored."""


class AnalysisError(CropCareError):
    """Raised when an analysis record cannot be created or updated."""

    def __init__(self, message: str, analysis_id: str | None = None) -> None:
        super().__init__(message, {"analysis_id": analysis_id})
        self.analysis_id = analysis_id


class CameraErrorKind(StrEnum):
    """Camera acquisition failure categories."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    BUSY = "busy"
    UNKNOWN = "unknown"


CAMERA_MESSAGES = {
    CameraErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera permissions.",
    CameraErrorKind.NOT_FOUND: "No camera found on this device.",
    CameraErrorKind.BUSY: "Camera is already in use by another application.",
    CameraErrorKind.UNKNOWN: "Failed to access camera",
}


class CameraError(CropCareError):
    """Raised when a frame cannot be acquired."""

    def __init__(self, kind: CameraErrorKind, message: str | None = None) -> None:
        super().__init__(message or CAMERA_MESSAGES[kind], {"kind": kind.value})
        self.kind = kind
