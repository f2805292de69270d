"""Upload of processed images to object storage."""

import asyncio
import logging
import re

from cropcare.api.backend import Backend
from cropcare.core.constants import APIConstants, Buckets
from cropcare.core.ids import timestamped_id
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import CropCareError, UploadError
from cropcare.media.images import compress_image, generate_thumbnail
from cropcare.models.media import CompressionOptions, UploadResult

logger = logging.getLogger(__name__)


def thumbnail_path(path: str) -> str:
    """``<user>/<name>`` -> ``<user>/thumbnails/<name>``."""
    if "/" not in path:
        return f"thumbnails/{path}"
    return re.sub(r"/([^/]+)$", r"/thumbnails/\1", path)


class ImageUploader:
    """Compresses and stores images under unique per-user paths."""

    def __init__(
        self,
        backend: Backend,
        compression: CompressionOptions | None = None,
        signed_url_ttl: int = APIConstants.SIGNED_URL_TTL,
        clock: Clock = now_ms,
    ) -> None:
        self.backend = backend
        self.compression = compression or CompressionOptions()
        self.signed_url_ttl = signed_url_ttl
        self.clock = clock

    async def upload(
        self,
        data: bytes,
        user_id: str,
        bucket: Buckets = Buckets.CROP_IMAGES,
        thumbnail: bool = True,
        compressed: bool = False,
    ) -> UploadResult:
        """Store an image and return a time-limited URL plus its durable path.

        Objects are never overwritten: the name carries a timestamp and a random
        suffix and the upload is made without upsert.

        Args:
            data: Image bytes
            user_id: Owner; the first path segment
            bucket: Target bucket
            thumbnail: Also store a thumbnail (best-effort)
            compressed: ``data`` has already been through ``compress_image``

        Raises:
            ValidationError: If the image cannot be decoded
            UploadError: If storing or signing fails
        """
        if not user_id:
            raise UploadError("User not authenticated")
        if not compressed:
            data = await asyncio.to_thread(compress_image, data, self.compression)

        name = f"{timestamped_id(self.clock)}.jpg"
        path = f"{user_id}/{name}"
        try:
            await self.backend.upload(bucket, path, data)
            url = await self.backend.create_signed_url(bucket, path, self.signed_url_ttl)
        except CropCareError as e:
            logger.error(f"Upload to {bucket}/{path} failed: {e}")
            raise UploadError(f"Failed to upload image: {e}", {"bucket": str(bucket), "path": path}) from e

        thumbnail_url = await self._upload_thumbnail(data, bucket, thumbnail_path(path)) if thumbnail else None
        logger.info(f"Uploaded image to {bucket}/{path}")
        return UploadResult(url=url, path=path, thumbnail_url=thumbnail_url)

    async def _upload_thumbnail(self, data: bytes, bucket: Buckets, path: str) -> str | None:
        try:
            thumb = await asyncio.to_thread(generate_thumbnail, data)
            await self.backend.upload(bucket, path, thumb)
            return await self.backend.create_signed_url(bucket, path, self.signed_url_ttl)
        except Exception as e:
            logger.warning(f"Thumbnail generation failed: {e}")
            return None

    async def delete(self, path: str, bucket: Buckets = Buckets.CROP_IMAGES) -> None:
        """Remove an image and, best-effort, its thumbnail.

        Raises:
            UploadError: If the image itself cannot be removed
        """
        try:
            await self.backend.remove(bucket, [path])
        except CropCareError as e:
            raise UploadError(f"Delete failed: {e}", {"bucket": str(bucket), "path": path}) from e
        try:
            await self.backend.remove(bucket, [thumbnail_path(path)])
        except CropCareError as e:
            logger.debug(f"No thumbnail removed for {path}: {e}")
