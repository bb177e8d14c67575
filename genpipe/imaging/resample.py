"""Exact-size resampling with an accelerated path and a CPU fallback."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from PIL import Image

from genpipe.core.errors import ResourceExhausted
from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)

# Above these the accelerated path is skipped to stay clear of device memory limits
GPU_MAX_DIMENSION = 6144
GPU_MAX_PIXELS = 24_000_000

STAGE_FACTOR = 1.5


class Resampler(ABC):
    """Resize a buffer to an exact target size."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short strategy name ("gpu" or "cpu")."""
        pass

    @abstractmethod
    def resample(self, buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
        """Return a new buffer of exactly ``width`` x ``height``.

        Args:
            buffer: Source image
            width: Target width in pixels
            height: Target height in pixels

        Returns:
            Resized PixelBuffer
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"


class StagedCpuResampler(Resampler):
    """Pillow resize that grows the image in x1.5 steps before the final draw.

    Stepping avoids the softness of a single large-ratio bilinear stretch.
    """

    def __init__(self, resample_filter: Image.Resampling = Image.Resampling.BILINEAR):
        self.resample_filter = resample_filter

    @property
    def name(self) -> str:
        return "cpu"

    def resample(self, buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
        if width < 1 or height < 1:
            raise ValueError(f"Invalid target size {width}x{height}")

        if buffer.size == (width, height):
            return buffer.copy()

        image = buffer.to_image()
        current_w, current_h = image.size
        steps = 0

        while current_w * STAGE_FACTOR < width or current_h * STAGE_FACTOR < height:
            next_w = min(round(current_w * STAGE_FACTOR), width)
            next_h = min(round(current_h * STAGE_FACTOR), height)
            image = image.resize((next_w, next_h), self.resample_filter)
            current_w, current_h = next_w, next_h
            steps += 1

        if (current_w, current_h) != (width, height):
            image = image.resize((width, height), self.resample_filter)

        logger.debug(
            f"CPU resample {buffer.width}x{buffer.height} -> {width}x{height} "
            f"({steps} intermediate steps)"
        )
        return PixelBuffer.from_image(image)


def cubic_weight(x: np.ndarray) -> np.ndarray:
    """Four-tap cubic convolution weight (the a = -1 Catmull-Rom family member)."""
    x = np.abs(x)
    near = 1.0 - 2.0 * x ** 2 + x ** 3
    far = 4.0 - 8.0 * x + 5.0 * x ** 2 - x ** 3
    return np.where(x <= 1.0, near, np.where(x < 2.0, far, 0.0))


def bicubic_weight_matrix(src_size: int, dst_size: int) -> np.ndarray:
    """Build the ``(dst_size, src_size)`` matrix mapping one axis of source to target.

    Each target sample sits at ``(i + 0.5) * src/dst - 0.5`` in source space and
    reads four neighbours, clamped to the edge.
    """
    scale = src_size / dst_size
    centers = (np.arange(dst_size) + 0.5) * scale - 0.5
    base = np.floor(centers)
    frac = centers - base

    matrix = np.zeros((dst_size, src_size), dtype=np.float64)
    rows = np.arange(dst_size)
    for tap in (-1, 0, 1, 2):
        columns = np.clip(base + tap, 0, src_size - 1).astype(np.int64)
        np.add.at(matrix, (rows, columns), cubic_weight(tap - frac))
    return matrix


class TorchBicubicResampler(Resampler):
    """Separable bicubic resampling on a torch device.

    The two axis passes run as matrix products on the device; the result is
    copied back to host memory before returning, so the call is synchronous.

    Attributes:
        device: torch device string (e.g. "cuda", "cuda:1", "cpu")
    """

    def __init__(self, device: str = "cuda"):
        self.device = device

    @property
    def name(self) -> str:
        return "gpu"

    @classmethod
    def probe(cls) -> Optional["TorchBicubicResampler"]:
        """Return a resampler when a CUDA device is usable, None otherwise."""
        try:
            import torch
        except ImportError:
            logger.info("torch is not installed; accelerated resampling unavailable")
            return None

        try:
            if not torch.cuda.is_available():
                logger.info("No CUDA device available; accelerated resampling unavailable")
                return None
            name = torch.cuda.get_device_name(torch.cuda.current_device())
        except Exception as e:
            logger.warning(f"CUDA probe failed: {e}")
            return None

        logger.info(f"Accelerated resampling enabled on {name}")
        return cls("cuda")

    @staticmethod
    def supports(width: int, height: int) -> bool:
        """Return False for targets too large to render safely on the device."""
        return max(width, height) <= GPU_MAX_DIMENSION and width * height <= GPU_MAX_PIXELS

    def resample(self, buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
        if not self.supports(width, height):
            raise ResourceExhausted(f"Target {width}x{height} exceeds accelerated resampling limits")

        import torch

        with torch.no_grad():
            source = torch.from_numpy(buffer.pixels).to(self.device, dtype=torch.float32)
            rows = torch.from_numpy(bicubic_weight_matrix(buffer.height, height)).to(
                self.device, dtype=torch.float32
            )
            cols = torch.from_numpy(bicubic_weight_matrix(buffer.width, width)).to(
                self.device, dtype=torch.float32
            )

            vertical = torch.einsum("ys,sxc->yxc", rows, source)
            result = torch.einsum("xs,ysc->yxc", cols, vertical)
            result = torch.clamp(torch.round(result), 0, 255).to(torch.uint8)
            pixels = result.cpu().numpy()

        logger.debug(f"GPU resample {buffer.width}x{buffer.height} -> {width}x{height} on {self.device}")
        return PixelBuffer(np.ascontiguousarray(pixels))


class AdaptiveResampler(Resampler):
    """Prefer the accelerated resampler; fall back to the CPU one on any problem.

    This stage never fails because of the accelerated path: oversize targets,
    a missing device and any exception raised while rendering all route to
    the CPU strategy.

    Attributes:
        gpu: Accelerated resampler, or None when unavailable/disabled
        cpu: CPU resampler, always present
        last_strategy: Name of the strategy that produced the most recent result
    """

    def __init__(
        self,
        gpu: Optional[Resampler] = None,
        cpu: Optional[Resampler] = None
    ):
        self.gpu = gpu
        self.cpu = cpu or StagedCpuResampler()
        self.last_strategy = self.cpu.name

    @property
    def name(self) -> str:
        return "adaptive"

    @property
    def gpu_available(self) -> bool:
        return self.gpu is not None

    def resample(self, buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
        if self.gpu is not None and TorchBicubicResampler.supports(width, height):
            try:
                result = self.gpu.resample(buffer, width, height)
                if result.size == (width, height):
                    self.last_strategy = self.gpu.name
                    return result
                logger.warning(
                    f"Accelerated resampler returned {result.width}x{result.height}, "
                    f"expected {width}x{height}; using CPU"
                )
            except Exception as e:
                logger.warning(f"Accelerated resampling failed, falling back to CPU: {e}")
        elif self.gpu is not None:
            logger.info(f"Target {width}x{height} too large for accelerated resampling; using CPU")

        self.last_strategy = self.cpu.name
        return self.cpu.resample(buffer, width, height)


def create_resampler(use_gpu: bool = True) -> AdaptiveResampler:
    """Probe capabilities once and build the resampler for a batch.

    Args:
        use_gpu: Whether the accelerated path may be used at all

    Returns:
        AdaptiveResampler with the accelerated path set when available
    """
    gpu = TorchBicubicResampler.probe() if use_gpu else None
    return AdaptiveResampler(gpu=gpu)
