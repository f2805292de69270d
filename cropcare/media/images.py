"""Client-side image processing with Pillow."""

import io
import logging
import math

from PIL import Image, ImageOps, UnidentifiedImageError

from cropcare.core.constants import ImageConstants
from cropcare.exceptions import ValidationError
from cropcare.models.media import CompressionOptions

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = {"JPEG", "PNG", "WEBP"}
SHRINK_FACTOR = 0.75
THUMBNAIL_MAX_MB = 0.1


def load_image(data: bytes) -> Image.Image:
    """Decode, apply the EXIF orientation and convert to RGB.

    Raises:
        ValidationError: If the bytes are not a decodable image
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError("image", len(data), "Unreadable image data") from e

    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def compress_image(data: bytes, options: CompressionOptions | None = None) -> bytes:
    """Re-encode an image as JPEG within a size and dimension limit.

    The longer side is first brought down to ``max_dimension``. Quality then steps
    down from 90 to 40; if the result is still too large the image is shrunk by a
    quarter and the quality ladder is retried. Same input and options always give
    the same bytes.

    Args:
        data: Encoded source image
        options: Size and dimension limits

    Returns:
        JPEG bytes no larger than ``options.max_bytes``

    Raises:
        ValidationError: If the input cannot be decoded, or no encoding fits
    """
    options = options or CompressionOptions()
    image = load_image(data)
    image.thumbnail((options.max_dimension, options.max_dimension), Image.Resampling.LANCZOS)

    while True:
        for quality in range(ImageConstants.START_QUALITY, ImageConstants.MIN_QUALITY - 1, -ImageConstants.QUALITY_STEP):
            encoded = encode_jpeg(image, quality)
            if len(encoded) <= options.max_bytes:
                logger.debug(
                    f"Compressed {format_file_size(len(data))} to {format_file_size(len(encoded))} "
                    f"at {image.width}x{image.height}, quality {quality}"
                )
                return encoded

        width, height = image.size
        if max(width, height) <= ImageConstants.MIN_DIMENSION:
            raise ValidationError(
                "max_size_mb", options.max_size_mb, "Image cannot be compressed below the size limit"
            )
        new_size = (max(1, math.floor(width * SHRINK_FACTOR)), max(1, math.floor(height * SHRINK_FACTOR)))
        image = image.resize(new_size, Image.Resampling.LANCZOS)


def generate_thumbnail(data: bytes, size: int = ImageConstants.THUMBNAIL_SIZE) -> bytes:
    """Small JPEG preview whose longer side is at most ``size``."""
    return compress_image(data, CompressionOptions(max_size_mb=THUMBNAIL_MAX_MB, max_dimension=size))


def validate_image(data: bytes, size_limit: int = ImageConstants.MAX_UPLOAD_BYTES) -> str:
    """Check an image before it is processed.

    Returns:
        The detected format (``JPEG``, ``PNG`` or ``WEBP``)

    Raises:
        ValidationError: If the image is too large or of another format
    """
    if len(data) > size_limit:
        raise ValidationError("image", len(data), f"Image must be less than {format_file_size(size_limit)}")
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format or ""
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError("image", len(data), "Only JPEG, PNG, and WebP images are allowed") from e
    if image_format not in ALLOWED_FORMATS:
        raise ValidationError("image", image_format, "Only JPEG, PNG, and WebP images are allowed")
    return image_format


def image_dimensions(data: bytes) -> tuple[int, int]:
    """(width, height) as displayed, after EXIF orientation."""
    image = load_image(data)
    return image.width, image.height


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"
