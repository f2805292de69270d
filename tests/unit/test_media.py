# =============================================================================
# tests/unit/test_media.py
# Unit tests for image processing, capture and upload
# =============================================================================

import asyncio
import errno
import io

import pytest
from PIL import Image

from cropcare.core.constants import Buckets
from cropcare.exceptions import CameraError, CameraErrorKind, ServiceError, UploadError, ValidationError
from cropcare.media.camera import Camera, GallerySource, classify
from cropcare.media.images import compress_image, format_file_size, generate_thumbnail, image_dimensions, validate_image
from cropcare.media.upload import ImageUploader, thumbnail_path
from cropcare.models.media import CompressionOptions, FacingMode


class TestCompression:
    """Test size- and dimension-bounded JPEG compression"""

    def test_large_photo_fits_limits(self, image_factory):
        """A 5000x3000 photo ends up within 1 MB and 1920 px"""
        data = image_factory(5000, 3000, noise=True)

        compressed = compress_image(data, CompressionOptions(max_size_mb=1, max_dimension=1920))

        assert len(compressed) <= 1024 * 1024
        with Image.open(io.BytesIO(compressed)) as image:
            assert image.format == "JPEG"
            assert max(image.size) <= 1920

    def test_same_input_gives_same_bytes(self, image_factory):
        """Compression is deterministic"""
        data = image_factory(800, 600, noise=True)
        options = CompressionOptions(max_size_mb=0.05, max_dimension=640)

        assert compress_image(data, options) == compress_image(data, options)

    def test_png_is_reencoded_as_jpeg(self, image_factory):
        """The output format is always JPEG"""
        compressed = compress_image(image_factory(300, 200, image_format="PNG"))

        with Image.open(io.BytesIO(compressed)) as image:
            assert image.format == "JPEG"
            assert image.size == (300, 200)

    def test_tight_limit_shrinks_image(self, image_factory):
        """When quality alone is not enough the image is downscaled"""
        compressed = compress_image(
            image_factory(1200, 1200, noise=True), CompressionOptions(max_size_mb=0.02, max_dimension=1200)
        )

        assert len(compressed) <= int(0.02 * 1024 * 1024)
        assert max(image_dimensions(compressed)) < 1200

    def test_undecodable_input_is_rejected(self):
        """Garbage bytes raise a validation error"""
        with pytest.raises(ValidationError):
            compress_image(b"not an image")

    def test_thumbnail_is_small(self, image_factory):
        """Thumbnails fit in 300 px"""
        thumb = generate_thumbnail(image_factory(1600, 900))

        assert max(image_dimensions(thumb)) <= 300


class TestImageValidation:
    """Test pre-processing checks"""

    def test_accepts_supported_formats(self, image_factory):
        """JPEG, PNG and WebP are accepted"""
        assert validate_image(image_factory(10, 10)) == "JPEG"
        assert validate_image(image_factory(10, 10, image_format="PNG")) == "PNG"
        assert validate_image(image_factory(10, 10, image_format="WEBP")) == "WEBP"

    def test_rejects_other_formats(self, image_factory):
        """GIF is not allowed"""
        with pytest.raises(ValidationError, match="Only JPEG, PNG, and WebP"):
            validate_image(image_factory(10, 10, image_format="GIF"))

    def test_rejects_oversized_file(self, image_factory):
        """Files above the limit are refused before decoding"""
        with pytest.raises(ValidationError, match="less than"):
            validate_image(image_factory(10, 10), size_limit=100)

    @pytest.mark.parametrize(
        "size, expected",
        [(0, "0 Bytes"), (512, "512 Bytes"), (1024, "1 KB"), (1536, "1.5 KB"), (10 * 1024 * 1024, "10 MB")],
    )
    def test_format_file_size(self, size, expected):
        """Sizes are shown with binary units"""
        assert format_file_size(size) == expected


class FailingSource:
    is_live = True

    def __init__(self, error: Exception) -> None:
        self.error = error

    def read_frame(self, facing_mode):
        raise self.error


class StaticSource:
    is_live = True

    def __init__(self, frame: bytes) -> None:
        self.frame = frame

    def read_frame(self, facing_mode):
        return self.frame


class TestCamera:
    """Test frame acquisition and error mapping"""

    @pytest.mark.parametrize(
        "error, kind",
        [
            (PermissionError("denied"), CameraErrorKind.PERMISSION_DENIED),
            (FileNotFoundError("no device"), CameraErrorKind.NOT_FOUND),
            (OSError(errno.EBUSY, "busy"), CameraErrorKind.BUSY),
            (RuntimeError("driver"), CameraErrorKind.UNKNOWN),
        ],
    )
    def test_error_mapping(self, error, kind):
        """Acquisition failures map onto the four camera error kinds"""
        assert classify(error) == kind

        with pytest.raises(CameraError) as exc_info:
            asyncio.run(Camera(FailingSource(error)).capture())
        assert exc_info.value.kind == kind

    def test_gallery_capture_returns_file_bytes(self, tmp_path, leaf_jpeg):
        """Gallery frames are returned unchanged"""
        path = tmp_path / "leaf.jpg"
        path.write_bytes(leaf_jpeg)

        assert asyncio.run(Camera(GallerySource(path)).capture()) == leaf_jpeg

    def test_missing_gallery_file_is_not_found(self, tmp_path):
        """A missing file maps to not found"""
        with pytest.raises(CameraError) as exc_info:
            asyncio.run(Camera(GallerySource(tmp_path / "missing.jpg")).capture())
        assert exc_info.value.kind == CameraErrorKind.NOT_FOUND

    def test_front_camera_frame_is_mirrored(self):
        """Frames from the user-facing camera are flipped horizontally"""
        image = Image.new("RGB", (64, 32), (0, 0, 0))
        image.paste((255, 255, 255), (0, 0, 32, 32))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")

        camera = Camera(StaticSource(buffer.getvalue()))
        assert camera.switch_facing() == FacingMode.USER
        frame = asyncio.run(camera.capture())

        with Image.open(io.BytesIO(frame)) as mirrored:
            assert mirrored.getpixel((8, 16))[0] < 64
            assert mirrored.getpixel((56, 16))[0] > 192

    def test_empty_frame_is_unknown_error(self):
        """An empty frame is reported as an unknown failure"""
        with pytest.raises(CameraError) as exc_info:
            asyncio.run(Camera(StaticSource(b"")).capture())
        assert exc_info.value.kind == CameraErrorKind.UNKNOWN


class TestImageUploader:
    """Test storage of compressed images"""

    def test_upload_stores_under_user_path(self, backend, clock, leaf_jpeg):
        """Images go to <user>/<timestamp>_<suffix>.jpg with a signed URL"""
        uploader = ImageUploader(backend, clock=clock)

        result = asyncio.run(uploader.upload(leaf_jpeg, "user-1"))

        user, name = result.path.split("/")
        assert user == "user-1"
        assert name.startswith(f"{clock()}_") and name.endswith(".jpg")
        assert f"{Buckets.CROP_IMAGES}/{result.path}" in backend.storage
        assert f"{Buckets.CROP_IMAGES}/{thumbnail_path(result.path)}" in backend.storage
        assert "expires=3600" in result.url
        assert result.thumbnail_url is not None

    def test_paths_are_unique(self, backend, clock, leaf_jpeg):
        """Two uploads in the same millisecond never collide"""
        uploader = ImageUploader(backend, clock=clock)

        async def scenario():
            return [await uploader.upload(leaf_jpeg, "user-1", thumbnail=False) for _ in range(3)]

        paths = {result.path for result in asyncio.run(scenario())}
        assert len(paths) == 3

    def test_thumbnail_failure_is_tolerated(self, backend, clock, leaf_jpeg):
        """A failing thumbnail upload does not fail the image upload"""
        backend.fail("upload", ServiceError(500, "thumb store down"), target="thumbnails")
        uploader = ImageUploader(backend, clock=clock)

        result = asyncio.run(uploader.upload(leaf_jpeg, "user-1"))

        assert result.thumbnail_url is None
        assert f"{Buckets.CROP_IMAGES}/{result.path}" in backend.storage

    def test_storage_failure_raises_upload_error(self, backend, clock, leaf_jpeg):
        """A failing image upload is reported as an upload error"""
        backend.fail("upload", ServiceError(500, "store down"))
        uploader = ImageUploader(backend, clock=clock)

        with pytest.raises(UploadError):
            asyncio.run(uploader.upload(leaf_jpeg, "user-1"))

    def test_requires_user(self, backend, leaf_jpeg):
        """Anonymous uploads are refused"""
        with pytest.raises(UploadError, match="not authenticated"):
            asyncio.run(ImageUploader(backend).upload(leaf_jpeg, ""))

    def test_delete_removes_thumbnail_too(self, backend, clock, leaf_jpeg):
        """Deleting an image also removes its thumbnail"""
        uploader = ImageUploader(backend, clock=clock)

        async def scenario():
            result = await uploader.upload(leaf_jpeg, "user-1")
            await uploader.delete(result.path)

        asyncio.run(scenario())
        assert backend.storage == {}
