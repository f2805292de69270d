"""Image capture and upload data models."""

from enum import StrEnum

from pydantic import BaseModel, Field

from cropcare.core.constants import ImageConstants


class FacingMode(StrEnum):
    """Which camera the frame comes from."""

    USER = "user"
    ENVIRONMENT = "environment"


class CompressionOptions(BaseModel):
    """Upper bounds for a compressed image."""

    max_size_mb: float = Field(default=1.0, gt=0)
    max_dimension: int = Field(default=ImageConstants.MAX_DIMENSION, ge=ImageConstants.MIN_DIMENSION)

    @property
    def max_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


class UploadResult(BaseModel):
    """Where an uploaded image lives."""

    url: str  # signed, time-limited
    path: str  # durable storage path
    thumbnail_url: str | None = None
