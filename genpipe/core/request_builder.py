"""Target size resolution, seed selection and request construction."""

import random
from typing import Optional

from genpipe.core.models import (
    GenerationRequest,
    MIN_REQUEST_SIDE,
    MAX_REQUEST_SIDE,
)

SEED_SPACE = 2 ** 32
SEED_JITTER_STRIDE = 9973
SEED_JITTER_RANDOM = 1000

_default_rng = random.Random()


def parse_aspect(value: Optional[str]) -> tuple[int, int]:
    """Parse ``"W/H"`` into integers, each at least 1.

    Malformed values fall back to ``1/1``.
    """
    try:
        width_part, height_part = (value or "1/1").split("/")
        aspect_w, aspect_h = int(float(width_part)), int(float(height_part))
    except (ValueError, OverflowError):
        return 1, 1
    return max(1, aspect_w), max(1, aspect_h)


def resolve_height(width: int, aspect_w: int, aspect_h: int) -> int:
    """Height matching ``width`` at ``aspect_w:aspect_h``, never below 1."""
    return max(1, round(width * aspect_h / aspect_w))


def clamp_request_side(value: int) -> int:
    return min(max(MIN_REQUEST_SIDE, int(value)), MAX_REQUEST_SIDE)


def random_seed(rng: Optional[random.Random] = None) -> int:
    """Draw a uniform seed in ``[0, 2**32)``."""
    return (rng or _default_rng).randrange(SEED_SPACE)


def base_seed_for_unit(
    seed_base: Optional[int],
    index: int,
    rng: Optional[random.Random] = None
) -> int:
    """Seed for the first attempt of the ``index``-th (1-based) image of a prompt."""
    if seed_base is not None:
        return seed_base + index - 1
    return random_seed(rng)


def jitter_seed(seed: int, attempt: int, rng: Optional[random.Random] = None) -> int:
    """Perturb ``seed`` for retry ``attempt``; attempt 0 keeps the seed as is."""
    if attempt <= 0:
        return seed
    return seed + attempt * SEED_JITTER_STRIDE + (rng or _default_rng).randrange(SEED_JITTER_RANDOM)


def quality_tag(model_id: str, attempt: int) -> str:
    return f"m{model_id}-a{attempt}"


def build_request(
    prompt: str,
    model_id: str,
    width: int,
    height: int,
    seed: Optional[int] = None,
    suppress_watermark: bool = True,
    attempt: int = 0,
    rng: Optional[random.Random] = None
) -> GenerationRequest:
    """Build the request for one attempt.

    Args:
        prompt: Text prompt
        model_id: Model identifier
        width: Target width; clamped to 64-3072
        height: Target height; clamped to 64-3072
        seed: Seed to use; a random one is drawn when None
        suppress_watermark: Ask the endpoint not to add a logo
        attempt: 0-based attempt index within the unit
        rng: Random source for the seed draw

    Returns:
        Immutable GenerationRequest
    """
    return GenerationRequest(
        prompt=prompt,
        model_id=model_id,
        target_width=clamp_request_side(width),
        target_height=clamp_request_side(height),
        seed=seed if seed is not None else random_seed(rng),
        suppress_watermark=suppress_watermark,
        quality_tag=quality_tag(model_id, attempt),
    )
