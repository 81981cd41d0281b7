"""Utility helpers for reference images and data URLs."""

from __future__ import annotations

import base64
import binascii
import io
from typing import Tuple

from PIL import Image

DATA_URL_PREFIX = "data:"


def to_png_bytes(image: Image.Image) -> bytes:
    """Encode a PIL image as PNG."""
    if image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def generate_thumbnail(image: Image.Image, max_size: Tuple[int, int] = (256, 256)) -> Image.Image:
    """Create a thumbnail suitable for upload previews."""
    thumb = image.copy()
    thumb.thumbnail(max_size)
    return thumb


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    """Wrap raw bytes in a base64 ``data:`` URL."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def is_data_url(url: str) -> bool:
    return url.startswith(DATA_URL_PREFIX)


def decode_data_url(url: str) -> bytes:
    """Return the payload of a base64 ``data:`` URL."""
    if not is_data_url(url):
        raise ValueError("Not a data URL")
    header, _, payload = url.partition(",")
    if not payload or ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc
