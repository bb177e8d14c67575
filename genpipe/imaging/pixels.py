"""Pixel buffer type passed between pipeline stages."""

from dataclasses import dataclass

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class PixelBuffer:
    """Row-major RGBA image held as a ``(height, width, 4)`` uint8 array.

    Each stage returns a new buffer; a buffer is never shared between the
    stage that produced it and the one that consumes it.

    Attributes:
        pixels: RGBA pixel data, shape ``(height, width, 4)``
    """

    pixels: np.ndarray

    def __post_init__(self):
        pixels = self.pixels
        if not isinstance(pixels, np.ndarray):
            raise TypeError("pixels must be a numpy array")
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"pixels must have shape (height, width, 4), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"pixels must be uint8, got {pixels.dtype}")
        if pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise ValueError("width and height must be at least 1")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        """(width, height) in the same order Pillow uses."""
        return self.width, self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Copy a Pillow image into a new RGBA buffer."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(np.array(image, dtype=np.uint8))

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "PixelBuffer":
        """Build a buffer from a flat RGBA byte string.

        Raises:
            ValueError: If ``len(data) != width * height * 4``
        """
        expected = width * height * 4
        if len(data) != expected:
            raise ValueError(f"expected {expected} bytes for {width}x{height}, got {len(data)}")
        array = np.frombuffer(data, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(array)

    @classmethod
    def solid(cls, width: int, height: int, color: tuple[int, int, int, int]) -> "PixelBuffer":
        """Create a buffer filled with a single RGBA color."""
        array = np.empty((height, width, 4), dtype=np.uint8)
        array[...] = color
        return cls(array)

    def to_image(self) -> Image.Image:
        """Return a Pillow RGBA image backed by a copy of the pixels."""
        return Image.fromarray(self.pixels.copy())

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.pixels.copy())

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()

    def __repr__(self) -> str:
        return f"PixelBuffer(width={self.width}, height={self.height})"
