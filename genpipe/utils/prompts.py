"""Prompt list parsing and sample prompts."""

import random
import re
from typing import List, Optional

SAMPLE_PROMPTS = [
    "A futuristic cityscape at night, neon rain, reflective streets, cinematic ultrawide, "
    "volumetric fog, highly detailed",
    "A cozy reading nook with warm lamp light, rain on the window, soft bokeh, film grain, "
    "shallow depth of field",
    "A photorealistic robot barista serving coffee, stainless steel textures, natural morning "
    "light, 50mm lens",
    "An ancient library hidden in a forest, golden hour, god rays through trees, ethereal "
    "atmosphere, high detail",
    "An isometric pixel art cyberpunk alley, vending machines, animated neon signs, rainy vibes",
]

DELIMITERS = {
    "newline": r"\n+",
    "blankline": r"\n\s*\n+",
    "comma": r"\s*,\s*",
    "semicolon": r"\s*;\s*",
    "pipe": r"\s*\|\s*",
    "space": r"\s+",
}


def parse_prompts(raw: Optional[str], multi: bool = False, delimiter: str = "newline") -> List[str]:
    """Split user input into individual prompts.

    Args:
        raw: Text as typed by the user
        multi: Treat the text as several prompts
        delimiter: One of the keys of ``DELIMITERS``; unknown values keep the text whole

    Returns:
        Non-empty, stripped prompts
    """
    text = (raw or "").strip()
    if not text:
        return []
    if not multi:
        return [text]

    pattern = DELIMITERS.get(delimiter)
    parts = re.split(pattern, text) if pattern else [text]
    return [part.strip() for part in parts if part.strip()]


def surprise_prompt(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(SAMPLE_PROMPTS)
