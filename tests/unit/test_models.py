"""Unit tests for core data models."""

import pytest
from pydantic import ValidationError

from genpipe.core.models import (
    BatchConfig,
    BatchSummary,
    DuplicatePolicy,
    GenerationRequest,
    OutputFormat,
    UnitFailure,
)


class TestGenerationRequest:
    """Tests for GenerationRequest model."""

    def test_valid_request(self):
        """Test valid request."""
        request = GenerationRequest(
            prompt="test", model_id="flux", target_width=512, target_height=512
        )

        assert request.seed is None
        assert request.suppress_watermark is True
        assert request.quality_tag == "default"

    def test_empty_prompt_rejected(self):
        """Test empty prompt rejected."""
        with pytest.raises(ValidationError):
            GenerationRequest(prompt="", model_id="flux", target_width=512, target_height=512)

    @pytest.mark.parametrize("width", [0, 63, 3073])
    def test_width_bounds(self, width):
        """Test width bounds."""
        with pytest.raises(ValidationError):
            GenerationRequest(prompt="x", model_id="flux", target_width=width, target_height=512)

    def test_frozen(self):
        """Test frozen."""
        request = GenerationRequest(
            prompt="test", model_id="flux", target_width=512, target_height=512
        )
        with pytest.raises(ValidationError):
            request.prompt = "other"


class TestBatchConfig:
    """Tests for BatchConfig model."""

    def test_defaults(self):
        """Test defaults."""
        config = BatchConfig()

        assert config.count == 1
        assert config.output_format == OutputFormat.PNG
        assert config.quality_gate is False
        assert config.unique is False
        assert config.duplicate_policy == DuplicatePolicy.ACCEPT_ON_EXHAUSTION

    def test_target_size_from_aspect(self):
        """Test target size from aspect."""
        config = BatchConfig(width=1920, aspect="16/9")

        assert config.target_size() == (1920, 1080)

    def test_width_is_clamped(self):
        """Test width is clamped."""
        assert BatchConfig(width=10).width == 64
        assert BatchConfig(width=50000).width == 16384

    @pytest.mark.parametrize("width", [0, -5])
    def test_non_positive_width_is_clamped(self, width):
        """Widths below the canvas minimum are raised to it instead of rejected."""
        assert BatchConfig(width=width).width == 64

    def test_derived_height_respects_canvas_ceiling(self):
        """Test derived height respects canvas ceiling."""
        config = BatchConfig(width=16384, aspect="1/16")

        assert config.target_size() == (16384, 16384)

    def test_explicit_height_respects_canvas_ceiling(self):
        """Test explicit height respects canvas ceiling."""
        config = BatchConfig(width=512, height=40000, lock_aspect=False)

        assert config.target_size() == (512, 16384)

    @pytest.mark.parametrize("aspect", ["1e400/1", "inf/1", "1/inf"])
    def test_overflowing_aspect_falls_back_to_square(self, aspect):
        """Test overflowing aspect falls back to square."""
        assert BatchConfig(width=1024, aspect=aspect).target_size() == (1024, 1024)

    def test_explicit_height_when_unlocked(self):
        """Test explicit height when unlocked."""
        config = BatchConfig(width=800, aspect="1/1", height=600, lock_aspect=False)

        assert config.target_size() == (800, 600)

    def test_locked_aspect_ignores_height(self):
        """Test locked aspect ignores height."""
        config = BatchConfig(width=800, aspect="1/1", height=600, lock_aspect=True)

        assert config.target_size() == (800, 800)

    def test_negative_retries_rejected(self):
        """Test negative retries rejected."""
        with pytest.raises(ValidationError):
            BatchConfig(quality_retries=-1)

    def test_policy_from_string(self):
        """Test policy from string."""
        config = BatchConfig(duplicate_policy="fail")

        assert config.duplicate_policy == DuplicatePolicy.FAIL_ON_EXHAUSTION


class TestBatchSummary:
    """Tests for BatchSummary."""

    def test_processed(self):
        """Test processed."""
        summary = BatchSummary(
            total_units=3,
            completed=1,
            skipped=1,
            failures=[UnitFailure(prompt="p", index=2, reason="HTTP 404")],
        )

        assert summary.processed == 2
        assert summary.canceled is False
