"""Unit tests for the post-filter chain."""

from unittest.mock import patch

import numpy as np
import pytest

from genpipe.imaging.filters import (
    apply_post_filters,
    boost_contrast,
    median_blend,
    sharpen,
)
from genpipe.imaging.pixels import PixelBuffer


def gray_buffer(values, alpha=255):
    values = np.asarray(values, dtype=np.uint8)
    pixels = np.empty(values.shape + (4,), dtype=np.uint8)
    pixels[..., :3] = values[..., None]
    pixels[..., 3] = alpha
    return PixelBuffer(pixels)


class TestMedianBlend:
    """Tests for median_blend."""

    def test_isolated_spike_is_pulled_toward_median(self):
        """Test isolated spike is pulled toward median."""
        values = np.zeros((5, 5))
        values[2, 2] = 255

        result = median_blend(gray_buffer(values))

        assert tuple(result.pixels[2, 2, :3]) == (224, 224, 224)

    def test_border_untouched(self, noise_buffer):
        """Test border untouched."""
        result = median_blend(noise_buffer)

        assert (result.pixels[0] == noise_buffer.pixels[0]).all()
        assert (result.pixels[-1] == noise_buffer.pixels[-1]).all()
        assert (result.pixels[:, 0] == noise_buffer.pixels[:, 0]).all()
        assert (result.pixels[:, -1] == noise_buffer.pixels[:, -1]).all()
        assert not (result.pixels == noise_buffer.pixels).all()

    def test_zero_strength_is_identity(self, noise_buffer):
        """Test zero strength is identity."""
        assert median_blend(noise_buffer, strength=0).tobytes() == noise_buffer.tobytes()

    def test_tiny_image_is_unchanged(self):
        """Test tiny image is unchanged."""
        buffer = gray_buffer([[0, 255], [255, 0]])

        assert median_blend(buffer).tobytes() == buffer.tobytes()


class TestSharpen:
    """Tests for sharpen."""

    def test_solid_is_unchanged(self):
        """Test solid is unchanged."""
        buffer = PixelBuffer.solid(8, 8, (90, 140, 200, 255))

        assert sharpen(buffer).tobytes() == buffer.tobytes()

    def test_peak_is_amplified(self):
        """Test peak is amplified."""
        values = np.full((5, 5), 100)
        values[2, 2] = 150

        result = sharpen(gray_buffer(values))

        # 150 * (1 + 4 * 0.45) - 0.45 * 4 * 100
        assert result.pixels[2, 2, 0] == 240

    def test_border_untouched(self, noise_buffer):
        """Test border untouched."""
        result = sharpen(noise_buffer)

        assert (result.pixels[0] == noise_buffer.pixels[0]).all()
        assert (result.pixels[:, -1] == noise_buffer.pixels[:, -1]).all()

    def test_tiny_image_is_unchanged(self):
        """Test tiny image is unchanged."""
        buffer = gray_buffer([[10, 20]])

        assert sharpen(buffer).tobytes() == buffer.tobytes()


class TestBoostContrast:
    """Tests for boost_contrast."""

    @pytest.mark.parametrize("value,expected", [
        (128, 128),
        (200, 204),
        (10, 3),
        (0, 0),
        (255, 255),
    ])
    def test_stretch(self, value, expected):
        """Test stretch."""
        result = boost_contrast(gray_buffer([[value]]))

        assert result.pixels[0, 0, 0] == expected

    def test_covers_border(self):
        """Test covers border."""
        result = boost_contrast(gray_buffer(np.full((4, 4), 200)))

        assert (result.pixels[..., :3] == 204).all()


class TestApplyPostFilters:
    """Tests for apply_post_filters."""

    def test_alpha_preserved(self, noise_buffer):
        """Test alpha preserved."""
        pixels = noise_buffer.pixels.copy()
        pixels[..., 3] = 77

        result = apply_post_filters(PixelBuffer(pixels))

        assert (result.pixels[..., 3] == 77).all()
        assert result.size == noise_buffer.size

    def test_does_not_mutate_input(self, noise_buffer):
        """Test does not mutate input."""
        before = noise_buffer.tobytes()

        apply_post_filters(noise_buffer)

        assert noise_buffer.tobytes() == before

    def test_order(self, noise_buffer):
        """Test order."""
        calls = []
        with patch('genpipe.imaging.filters.median_blend', side_effect=lambda b: calls.append('median') or b), \
             patch('genpipe.imaging.filters.sharpen', side_effect=lambda b: calls.append('sharpen') or b), \
             patch('genpipe.imaging.filters.boost_contrast', side_effect=lambda b: calls.append('contrast') or b):
            apply_post_filters(noise_buffer)

        assert calls == ['median', 'sharpen', 'contrast']

    def test_deterministic(self, noise_buffer):
        """Test deterministic."""
        assert apply_post_filters(noise_buffer).tobytes() == apply_post_filters(noise_buffer).tobytes()
