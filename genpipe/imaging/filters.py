"""Deterministic post-filter chain applied after resampling.

The chain is fixed: median-blend denoise, sharpen, then contrast. The first
two leave the outermost ring of pixels untouched; contrast covers every pixel.
Alpha is never modified.
"""

import logging

import numpy as np
from PIL import Image, ImageFilter

from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)

DENOISE_STRENGTH = 0.12
SHARPEN_AMOUNT = 0.45
CONTRAST_BOOST = 0.06
CONTRAST_MIDPOINT = 128.0


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _has_interior(buffer: PixelBuffer) -> bool:
    return buffer.width >= 3 and buffer.height >= 3


def _rgb_image(buffer: PixelBuffer) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(buffer.pixels[..., :3]))


def median_blend(buffer: PixelBuffer, strength: float = DENOISE_STRENGTH) -> PixelBuffer:
    """Blend each interior pixel toward its 3x3 per-channel median.

    ``out = original * (1 - strength) + median * strength``
    """
    if strength <= 0 or not _has_interior(buffer):
        return buffer.copy()

    median = np.asarray(_rgb_image(buffer).filter(ImageFilter.MedianFilter(3)), dtype=np.float32)
    source = buffer.pixels[1:-1, 1:-1, :3].astype(np.float32)
    blended = source * (1.0 - strength) + median[1:-1, 1:-1] * strength

    out = buffer.pixels.copy()
    out[1:-1, 1:-1, :3] = np.clip(_round_half_up(blended), 0, 255).astype(np.uint8)
    return PixelBuffer(out)


def sharpen(buffer: PixelBuffer, amount: float = SHARPEN_AMOUNT) -> PixelBuffer:
    """Apply a 3x3 cross sharpen: centre ``1 + 4a``, orthogonal neighbours ``-a``."""
    if amount <= 0 or not _has_interior(buffer):
        return buffer.copy()

    a = amount
    kernel = ImageFilter.Kernel(
        (3, 3),
        [0, -a, 0,
         -a, 1 + 4 * a, -a,
         0, -a, 0],
        scale=1,
    )
    sharpened = np.asarray(_rgb_image(buffer).filter(kernel), dtype=np.uint8)

    out = buffer.pixels.copy()
    out[1:-1, 1:-1, :3] = sharpened[1:-1, 1:-1]
    return PixelBuffer(out)


def boost_contrast(buffer: PixelBuffer, boost: float = CONTRAST_BOOST) -> PixelBuffer:
    """Stretch every channel linearly around the 128 midpoint by ``1 + boost``."""
    if boost <= 0:
        return buffer.copy()

    rgb = buffer.pixels[..., :3].astype(np.float32)
    stretched = (rgb - CONTRAST_MIDPOINT) * (1.0 + boost) + CONTRAST_MIDPOINT

    out = buffer.pixels.copy()
    out[..., :3] = np.clip(_round_half_up(stretched), 0, 255).astype(np.uint8)
    return PixelBuffer(out)


def apply_post_filters(buffer: PixelBuffer) -> PixelBuffer:
    """Run the full filter chain in its fixed order."""
    result = median_blend(buffer)
    result = sharpen(result)
    result = boost_contrast(result)
    logger.debug(f"Post-filters applied to {result.width}x{result.height} image")
    return result
