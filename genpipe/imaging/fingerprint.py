"""Perceptual average-hash fingerprints for near-duplicate detection."""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
from PIL import Image

from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)

HASH_SIZE = 8
DUPLICATE_DISTANCE = 6

# ITU-R BT.601 luma
_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


@dataclass(frozen=True)
class Fingerprint:
    """Fixed-length bit string packed as lowercase hex (4 bits per character).

    Attributes:
        hex: Packed bits, most significant first
    """

    hex: str

    @property
    def bit_length(self) -> int:
        return len(self.hex) * 4

    @property
    def bits(self) -> str:
        if not self.hex:
            return ""
        return format(int(self.hex, 16), f"0{self.bit_length}b")

    def distance(self, other: "Fingerprint") -> int:
        return hamming_distance(self, other)

    def __str__(self) -> str:
        return self.hex


def average_hash(buffer: PixelBuffer, size: int = HASH_SIZE) -> Fingerprint:
    """Compute the average-hash of a buffer.

    The image is box-downsampled to ``size`` x ``size``, converted to rounded
    luma, and each cell contributes a 1 bit when it is at least the grid mean.

    Args:
        buffer: Finished image
        size: Grid side; ``size * size`` must be a multiple of 4

    Returns:
        Fingerprint of ``size * size`` bits
    """
    if (size * size) % 4:
        raise ValueError(f"hash grid of {size}x{size} does not pack into hex")

    small = buffer.to_image().convert("RGB").resize((size, size), Image.Resampling.BOX)
    rgb = np.asarray(small, dtype=np.float64)
    gray = np.floor(rgb @ _LUMA_WEIGHTS + 0.5)
    mean = gray.mean()

    bits = "".join("1" if value >= mean else "0" for value in gray.ravel())
    packed = format(int(bits, 2), f"0{len(bits) // 4}x")
    return Fingerprint(packed)


def hamming_distance(a: Fingerprint, b: Fingerprint) -> int:
    """Number of differing bits between two fingerprints.

    Fingerprints of different lengths are maximally dissimilar: the longer
    bit length is returned.
    """
    if a.bit_length != b.bit_length or not a.hex:
        return max(a.bit_length, b.bit_length)
    return bin(int(a.hex, 16) ^ int(b.hex, 16)).count("1")


def is_duplicate(a: Fingerprint, b: Fingerprint, threshold: int = DUPLICATE_DISTANCE) -> bool:
    """Return True when two equal-length fingerprints are within ``threshold`` bits."""
    if a.bit_length != b.bit_length:
        return False
    return hamming_distance(a, b) <= threshold


def find_duplicate(
    fingerprint: Fingerprint,
    seen: Iterable[Fingerprint],
    threshold: int = DUPLICATE_DISTANCE
) -> Optional[Fingerprint]:
    """Return the first fingerprint in ``seen`` that ``fingerprint`` duplicates, if any."""
    for previous in seen:
        if is_duplicate(fingerprint, previous, threshold):
            logger.debug(
                f"Fingerprint {fingerprint} duplicates {previous} "
                f"(distance {hamming_distance(fingerprint, previous)})"
            )
            return previous
    return None
