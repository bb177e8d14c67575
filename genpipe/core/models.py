"""Core data models for batch image acquisition."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from genpipe.imaging.pixels import PixelBuffer
from genpipe.imaging.fingerprint import Fingerprint


# Request-time bounds accepted by the generation endpoint
MIN_REQUEST_SIDE = 64
MAX_REQUEST_SIDE = 3072

# Post-upscale canvas bounds
MIN_CANVAS_SIDE = 64
MAX_CANVAS_SIDE = 16384


def clamp_canvas_side(value: int) -> int:
    return min(max(1, int(value)), MAX_CANVAS_SIDE)


class OutputFormat(str, Enum):
    """Encodings the pipeline can deliver."""
    PNG = "png"
    JPEG = "jpeg"


class DuplicatePolicy(str, Enum):
    """What to do when the duplicate retry budget runs out."""
    ACCEPT_ON_EXHAUSTION = "accept"
    FAIL_ON_EXHAUSTION = "fail"


class GenerationRequest(BaseModel):
    """One fully parameterized call to the generation endpoint.

    Built fresh for every attempt and never mutated afterwards.

    Attributes:
        prompt: The text prompt describing the desired image
        model_id: Model identifier passed to the endpoint
        target_width: Requested width in pixels (64-3072)
        target_height: Requested height in pixels (64-3072)
        seed: Generation seed (None lets the endpoint choose)
        suppress_watermark: Ask the endpoint not to stamp a logo
        quality_tag: Free-form tag sent as ``q``; also defeats caches between attempts
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="Text prompt describing the desired image"
    )
    model_id: str = Field(
        ...,
        description="Model identifier passed to the endpoint"
    )
    target_width: int = Field(
        ...,
        ge=MIN_REQUEST_SIDE,
        le=MAX_REQUEST_SIDE,
        description="Requested width in pixels"
    )
    target_height: int = Field(
        ...,
        ge=MIN_REQUEST_SIDE,
        le=MAX_REQUEST_SIDE,
        description="Requested height in pixels"
    )
    seed: Optional[int] = Field(
        default=None,
        description="Generation seed"
    )
    suppress_watermark: bool = Field(
        default=True,
        description="Ask the endpoint not to add a logo"
    )
    quality_tag: str = Field(
        default="default",
        description="Free-form quality/cache tag"
    )


class BatchConfig(BaseModel):
    """Options for one batch run.

    Attributes:
        count: Images requested per prompt
        output_format: Encoding of delivered images
        width: Target canvas width; clamped to 64-16384
        aspect: Aspect ratio as ``"W/H"``; the height is derived from it
        height: Explicit height, used only when ``lock_aspect`` is False
        lock_aspect: Derive the height from ``aspect`` instead of ``height``
        seed_base: Seed of the first image; unit ``i`` uses ``seed_base + i - 1``
        suppress_watermark: Forwarded to every request
        quality_gate: Run the statistical quality gate
        use_gpu: Allow the accelerated resampling path
        unique: Reject near-duplicates of images already accepted in the batch
        quality_retries: Extra attempts allowed after quality rejections
        duplicate_retries: Extra attempts allowed after duplicate rejections
        duplicate_policy: Outcome when duplicate retries are exhausted
    """

    count: int = Field(default=1, ge=1, le=64)
    output_format: OutputFormat = OutputFormat.PNG
    width: int = 1024
    aspect: str = "1/1"
    height: Optional[int] = Field(default=None, ge=1)
    lock_aspect: bool = True
    seed_base: Optional[int] = None
    suppress_watermark: bool = True
    quality_gate: bool = False
    use_gpu: bool = True
    unique: bool = False
    quality_retries: int = Field(default=0, ge=0, le=10)
    duplicate_retries: int = Field(default=0, ge=0, le=10)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.ACCEPT_ON_EXHAUSTION

    @field_validator("width")
    @classmethod
    def clamp_width(cls, value: int) -> int:
        return min(max(MIN_CANVAS_SIDE, value), MAX_CANVAS_SIDE)

    def target_size(self) -> tuple[int, int]:
        """Return the (width, height) every unit of the batch is resized to."""
        from genpipe.core.request_builder import parse_aspect, resolve_height

        aspect_w, aspect_h = parse_aspect(self.aspect)
        derived = resolve_height(self.width, aspect_w, aspect_h)
        if self.lock_aspect or not self.height:
            height = derived
        else:
            height = self.height
        return clamp_canvas_side(self.width), clamp_canvas_side(height)


@dataclass
class AttemptResult:
    """Output of one successful trip through the pipeline stages."""
    image: PixelBuffer
    encoded_bytes: bytes
    seed_used: int
    fingerprint: Fingerprint
    format: OutputFormat
    strategy: str = "cpu"


@dataclass
class GalleryItem:
    """What the gallery collaborator receives for each accepted unit.

    Attributes:
        image_bytes: Encoded image
        format: Encoding of ``image_bytes``
        width: Final width in pixels
        height: Final height in pixels
        prompt: Prompt the image was generated from
        model_id: Model used for the generation
        model_label: Human-readable label (resampling strategy and model)
        seed: Seed that produced the accepted attempt
        index: 1-based index of the image within its prompt
        fingerprint: Average-hash of the finished image, as hex
        timestamp: When the unit was accepted
    """
    image_bytes: bytes
    format: OutputFormat
    width: int
    height: int
    prompt: str
    model_id: str
    model_label: str
    seed: int
    index: int
    fingerprint: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class UnitFailure:
    """A unit that was skipped, with a human-readable reason."""
    prompt: str
    index: int
    reason: str


@dataclass
class BatchSummary:
    """Final report of a batch run."""
    total_units: int
    completed: int
    skipped: int
    canceled: bool = False
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.completed + self.skipped
