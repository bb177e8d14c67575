"""Image encoding, metadata and file naming for delivered images."""

import io
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List

from PIL import Image, PngImagePlugin

from genpipe.core.collaborators import GallerySink
from genpipe.core.models import GalleryItem, OutputFormat
from genpipe.imaging.pixels import PixelBuffer

logger = logging.getLogger(__name__)

JPEG_QUALITY = 95


def encode_buffer(
    buffer: PixelBuffer,
    format: OutputFormat = OutputFormat.PNG,
    metadata: Optional[Dict[str, Any]] = None
) -> bytes:
    """Encode a buffer and embed metadata where the format allows it.

    Args:
        buffer: Finished image
        format: PNG or JPEG
        metadata: Fields to store as PNG text chunks (ignored for JPEG)

    Returns:
        Encoded image bytes
    """
    image = buffer.to_image()
    output = io.BytesIO()

    if format == OutputFormat.PNG:
        pnginfo = PngImagePlugin.PngInfo()
        for key, value in (metadata or {}).items():
            if value is not None:
                pnginfo.add_text(key, str(value))
        if metadata:
            pnginfo.add_text("metadata_json", json.dumps(metadata, default=str))

        image.save(output, format="PNG", pnginfo=pnginfo)

    elif format == OutputFormat.JPEG:
        # JPEG has no alpha: flatten onto white
        rgb_image = Image.new("RGB", image.size, (255, 255, 255))
        rgb_image.paste(image, mask=image.split()[-1])
        rgb_image.save(output, format="JPEG", quality=JPEG_QUALITY)

    else:
        raise ValueError(f"Unsupported output format: {format}")

    return output.getvalue()


def filename_from_prompt(
    prompt: str,
    index: int,
    ext: str,
    timestamp: Optional[datetime] = None
) -> str:
    """Build ``<slug>-<index>-<timestamp>.<ext>`` for a delivered image.

    The slug is the first 60 characters of the prompt with every run of
    non-alphanumerics collapsed to ``-``, lowercased; ``image`` when empty.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", (prompt or "").strip()[:60], flags=re.IGNORECASE)
    slug = slug.strip("-").lower() or "image"
    stamp = (timestamp or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{slug}-{index}-{stamp}.{ext}"


class DirectoryGallery(GallerySink):
    """Writes every accepted image to a directory.

    Attributes:
        output_dir: Target directory, created on first use
        saved: Paths written so far, in delivery order
    """

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)
        self.saved: List[Path] = []

    def add(self, item: GalleryItem) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename_from_prompt(
            item.prompt, item.index, item.format.value, item.timestamp
        )
        path.write_bytes(item.image_bytes)
        self.saved.append(path)
        logger.info(f"Saved {item.width}x{item.height} image to {path}")

    def __repr__(self) -> str:
        return f"DirectoryGallery(output_dir='{self.output_dir}', saved={len(self.saved)})"
