"""Shared test fixtures and configuration."""

import io
import os
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

from genpipe.core.models import BatchConfig
from genpipe.imaging.pixels import PixelBuffer
from genpipe.imaging.resample import AdaptiveResampler


@pytest.fixture
def noise_image():
    """Return a 256x256 RGB image of uniform random noise."""
    rng = np.random.default_rng(1234)
    return Image.fromarray(rng.integers(0, 256, size=(256, 256, 3), dtype=np.uint8))


@pytest.fixture
def noise_buffer(noise_image):
    """Return the noise image as a PixelBuffer."""
    return PixelBuffer.from_image(noise_image)


@pytest.fixture
def encode_png():
    """Return a function that encodes a PIL image to PNG bytes."""
    def _encode(image):
        buf = io.BytesIO()
        image.save(buf, format='PNG')
        return buf.getvalue()
    return _encode


@pytest.fixture
def noise_png_bytes(noise_image, encode_png):
    """Return the noise image as PNG bytes."""
    return encode_png(noise_image)


@pytest.fixture
def solid_png_bytes(encode_png):
    """Return a flat red 256x256 PNG."""
    return encode_png(Image.new('RGB', (256, 256), color='red'))


@pytest.fixture
def make_response():
    """Return a factory for mocked streaming requests responses."""
    def _make(status=200, content_type="image/png", body=b"\x89PNG fake"):
        response = Mock()
        response.status_code = status
        response.headers = {"content-type": content_type} if content_type is not None else {}
        response.iter_content.return_value = [body]
        return response
    return _make


@pytest.fixture
def cpu_resampler_factory():
    """Return a resampler factory that never touches a GPU."""
    return lambda use_gpu: AdaptiveResampler(gpu=None)


@pytest.fixture
def basic_config():
    """Return the minimal 512x512 batch configuration."""
    return BatchConfig(
        count=1,
        width=512,
        aspect="1/1",
        seed_base=42,
        quality_gate=False,
        use_gpu=False,
        unique=False,
    )


# Skip integration tests unless explicitly requested
def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests unless RUN_INTEGRATION_TESTS is set."""
    skip_integration = pytest.mark.skip(reason="Integration tests disabled (set RUN_INTEGRATION_TESTS=true to enable)")

    for item in items:
        if "integration" in item.keywords:
            if not os.getenv("RUN_INTEGRATION_TESTS", "").lower() == "true":
                item.add_marker(skip_integration)
