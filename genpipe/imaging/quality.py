"""Statistical quality gate for decoded images."""

import logging

import numpy as np
from PIL import Image

from genpipe.core.errors import QualityRejected
from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)

MIN_SIDE = 64
ASPECT_TOLERANCE = 0.20
TEXTURE_GRID = 64
MIN_LUMA_STDEV = 6.0

# ITU-R BT.709 luma
_LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722])


def nearly_equal_ratio(a: float, b: float, tolerance: float) -> bool:
    """Return True when ``a`` and ``b`` differ by at most ``tolerance`` relative to the larger."""
    return abs(a - b) / max(a, b) <= tolerance


def luma_stdev(buffer: PixelBuffer, grid: int = TEXTURE_GRID) -> float:
    """Population standard deviation of luma over a box-downsampled grid."""
    small = buffer.to_image().convert("RGB").resize((grid, grid), Image.Resampling.BOX)
    rgb = np.asarray(small, dtype=np.float64)
    return float((rgb @ _LUMA_WEIGHTS).std())


def check_quality(buffer: PixelBuffer, target_width: int, target_height: int) -> None:
    """Reject degenerate or malformed images.

    Args:
        buffer: Decoded image
        target_width: Width the image is meant to be delivered at
        target_height: Height the image is meant to be delivered at

    Raises:
        QualityRejected: If a side is under 64px, the aspect ratio is more than
            20% off the target's, or the image is nearly flat
    """
    if buffer.width < MIN_SIDE or buffer.height < MIN_SIDE:
        raise QualityRejected(
            f"Image too small: {buffer.width}x{buffer.height} (minimum {MIN_SIDE}px)"
        )

    if target_width and target_height:
        wanted = target_width / target_height
        if not nearly_equal_ratio(buffer.aspect_ratio, wanted, ASPECT_TOLERANCE):
            raise QualityRejected(
                f"Aspect ratio {buffer.aspect_ratio:.3f} too far from target {wanted:.3f}"
            )

    stdev = luma_stdev(buffer)
    if stdev < MIN_LUMA_STDEV:
        raise QualityRejected(f"Image looks flat (luma stdev {stdev:.2f} < {MIN_LUMA_STDEV})")

    logger.debug(f"Quality gate passed ({buffer.width}x{buffer.height}, luma stdev {stdev:.2f})")


def passes_quality(buffer: PixelBuffer, target_width: int, target_height: int) -> bool:
    """Boolean form of :func:`check_quality`."""
    try:
        check_quality(buffer, target_width, target_height)
        return True
    except QualityRejected:
        return False
