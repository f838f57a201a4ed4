"""Frame downsampling and JPEG encoding."""

from __future__ import annotations

import io
import time

from PIL import Image

from ..services.schemas import CapturedImage


def compute_dimensions(width: int, height: int, max_width: int) -> tuple[int, int]:
    """Scale ``(width, height)`` down to ``max_width``, keeping the aspect ratio."""
    if width <= 0 or height <= 0:
        raise ValueError("Frame dimensions must be positive")
    if width <= max_width:
        return width, height
    return max_width, max(1, round(height * max_width / width))


def encode_frame(image: Image.Image, max_width: int = 800, quality: float = 0.8) -> CapturedImage:
    """Resize ``image`` if wider than ``max_width`` and encode it as JPEG."""
    width, height = compute_dimensions(image.width, image.height, max_width)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.LANCZOS)
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=int(round(quality * 100)))
    return CapturedImage(
        data=buffer.getvalue(),
        width=width,
        height=height,
        mime_type="image/jpeg",
        captured_at=time.time(),
    )
