"""Orientation-aware decoding of raw image bytes."""

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from genpipe.core.errors import DecodeError
from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Cannot decode image ({len(data)} bytes): {e}") from e


def decode_oriented(data: bytes) -> PixelBuffer:
    """Decode bytes and apply any EXIF orientation to the pixels."""
    image = _open(data)
    return PixelBuffer.from_image(ImageOps.exif_transpose(image))


def decode_unrotated(data: bytes) -> PixelBuffer:
    """Decode bytes without touching orientation metadata."""
    return PixelBuffer.from_image(_open(data))


def decode_image(data: bytes) -> PixelBuffer:
    """Turn raw image bytes into an RGBA buffer in visual orientation.

    The oriented path is tried first. If applying the orientation fails for a
    reason other than unreadable bytes, the image is decoded as stored and the
    caller must not rely on orientation having been corrected.

    Args:
        data: Raw image bytes (PNG, JPEG, WebP, ...)

    Returns:
        Decoded PixelBuffer

    Raises:
        DecodeError: If the bytes are not a supported raster format
    """
    if not data:
        raise DecodeError("Cannot decode image: no data")

    try:
        return decode_oriented(data)
    except DecodeError:
        raise
    except Exception as e:
        logger.warning(f"Orientation-aware decode failed, decoding as stored: {e}")

    return decode_unrotated(data)
