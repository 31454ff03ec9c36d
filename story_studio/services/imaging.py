"""Server-side illustration shrinking for inline storage.

Images are decoded and re-encoded with Pillow. When even the lowest
configured quality does not fit, the oversize strategy decides what is
stored. ``truncate`` is lossy and may leave invalid image data behind.
"""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from typing import Optional, Tuple

from flask import current_app
from PIL import Image, UnidentifiedImageError

from .settings import PipelineSettings

PLACEHOLDER_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="100" height="100">'
    '<rect width="100" height="100" fill="#f0f0f0"/>'
    '<text x="50" y="55" font-family="Arial" font-size="12" fill="#666" text-anchor="middle">IMG</text>'
    "</svg>"
)

_FORMAT_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


@dataclass
class PreparedIllustration:
    """An illustration ready to be stored.

    ``inline`` is always a data URI within the configured limit (or empty);
    ``original`` keeps the provider bytes for blob uploads.
    """

    inline: str
    original: Optional[bytes] = None
    content_type: str = "image/png"
    original_size: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    quality: Optional[int] = None
    strategy: str = "none"

    @property
    def stored_size(self) -> int:
        return len(self.inline)

    @property
    def has_image(self) -> bool:
        return self.original is not None


def placeholder_data_uri() -> str:
    """Return the fixed placeholder illustration as a data URI."""

    encoded = base64.b64encode(PLACEHOLDER_SVG.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def detect_content_type(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return _FORMAT_MIME_TYPES.get(image.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def prepare_illustration(image_bytes: Optional[bytes], settings: PipelineSettings) -> PreparedIllustration:
    """Shrink ``image_bytes`` into an inline data URI that fits ``max_image_kb``."""

    if not image_bytes:
        return PreparedIllustration(inline="")

    logger = current_app.logger
    max_bytes = settings.max_image_bytes
    try:
        data_uri, width, height, quality = compress_to_jpeg(image_bytes, settings)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Could not decode the generated illustration; using the placeholder. Error: %s", exc)
        inline, strategy = _fit_placeholder(max_bytes)
        return PreparedIllustration(
            inline=inline,
            original=image_bytes,
            content_type=detect_content_type(image_bytes),
            original_size=len(image_bytes),
            strategy=strategy,
        )

    strategy = "compressed"
    if len(data_uri) > max_bytes:
        logger.warning(
            "Illustration still %d KB at quality %d (limit %d KB); applying '%s'.",
            round(len(data_uri) / 1024),
            quality,
            settings.max_image_kb,
            settings.oversize_strategy,
        )
        data_uri, strategy = enforce_size_limit(data_uri, max_bytes, settings.oversize_strategy)

    logger.info(
        "Illustration prepared: %d KB -> %d KB (%s).",
        round(len(image_bytes) / 1024),
        round(len(data_uri) / 1024),
        strategy,
    )
    return PreparedIllustration(
        inline=data_uri,
        original=image_bytes,
        content_type=detect_content_type(image_bytes),
        original_size=len(image_bytes),
        width=width,
        height=height,
        quality=quality,
        strategy=strategy,
    )


def compress_to_jpeg(image_bytes: bytes, settings: PipelineSettings) -> Tuple[str, int, int, int]:
    """Resize to the thumbnail box and lower JPEG quality until the data URI fits.

    Returns ``(data_uri, width, height, quality)``. The data URI may still be
    over the limit if ``min_jpeg_quality`` is reached first.
    """

    with Image.open(io.BytesIO(image_bytes)) as source:
        image = source.convert("RGB")
    image.thumbnail((settings.thumbnail_width, settings.thumbnail_height), Image.Resampling.LANCZOS)

    quality = settings.jpeg_quality
    while True:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
        data_uri = to_data_uri(buffer.getvalue(), "image/jpeg")
        if len(data_uri) <= settings.max_image_bytes or quality <= settings.min_jpeg_quality:
            return data_uri, image.width, image.height, quality
        quality = max(settings.min_jpeg_quality, int(quality * 0.7))


def enforce_size_limit(payload: str, max_bytes: int, strategy: str) -> Tuple[str, str]:
    """Bring ``payload`` under ``max_bytes`` using ``strategy``.

    Returns the payload to store and the strategy actually applied.
    """

    if len(payload) <= max_bytes:
        return payload, "none"
    if strategy == "truncate":
        return payload[:max_bytes], "truncate"
    if strategy == "placeholder":
        return _fit_placeholder(max_bytes)
    return "", "omit"


def _fit_placeholder(max_bytes: int) -> Tuple[str, str]:
    placeholder = placeholder_data_uri()
    if len(placeholder) <= max_bytes:
        return placeholder, "placeholder"
    return "", "omit"
