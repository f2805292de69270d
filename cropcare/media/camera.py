"""Frame acquisition from a camera or the device gallery."""

import asyncio
import errno
import logging
from pathlib import Path
from typing import Protocol

from PIL import ImageOps

from cropcare.exceptions import CameraError, CameraErrorKind, ValidationError
from cropcare.media.images import encode_jpeg, load_image
from cropcare.models.media import FacingMode

logger = logging.getLogger(__name__)

CAPTURE_QUALITY = 90


class FrameSource(Protocol):
    """Anything that can hand over one encoded frame."""

    is_live: bool

    def read_frame(self, facing_mode: FacingMode) -> bytes: ...


class GallerySource:
    """Reads a stored image instead of a live frame."""

    is_live = False

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def read_frame(self, facing_mode: FacingMode) -> bytes:
        return self.path.read_bytes()


def classify(error: Exception) -> CameraErrorKind:
    """Map an acquisition failure onto a camera error kind."""
    if isinstance(error, PermissionError):
        return CameraErrorKind.PERMISSION_DENIED
    if isinstance(error, FileNotFoundError):
        return CameraErrorKind.NOT_FOUND
    if isinstance(error, OSError) and error.errno == errno.EBUSY:
        return CameraErrorKind.BUSY
    return CameraErrorKind.UNKNOWN


class Camera:
    """Captures frames from a ``FrameSource``.

    Frames from the front (``user``) camera are mirrored so they match the preview.
    """

    def __init__(self, source: FrameSource, facing_mode: FacingMode = FacingMode.ENVIRONMENT) -> None:
        self.source = source
        self.facing_mode = facing_mode

    def switch_facing(self) -> FacingMode:
        self.facing_mode = FacingMode.USER if self.facing_mode == FacingMode.ENVIRONMENT else FacingMode.ENVIRONMENT
        return self.facing_mode

    async def capture(self) -> bytes:
        """Grab one frame.

        Raises:
            CameraError: With the kind derived from the underlying failure
        """
        try:
            frame = await asyncio.to_thread(self.source.read_frame, self.facing_mode)
        except Exception as e:
            kind = classify(e)
            logger.error(f"Camera acquisition failed ({kind.value}): {e}")
            raise CameraError(kind) from e

        if not frame:
            raise CameraError(CameraErrorKind.UNKNOWN, "Camera returned an empty frame")
        if self.facing_mode == FacingMode.USER and self.source.is_live:
            try:
                frame = encode_jpeg(ImageOps.mirror(load_image(frame)), CAPTURE_QUALITY)
            except ValidationError as e:
                raise CameraError(CameraErrorKind.UNKNOWN, "Camera returned an unreadable frame") from e
        return frame
