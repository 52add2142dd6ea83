"""Media URL helpers: data URLs, placeholder cards and loading for rendering."""

from __future__ import annotations

import base64
import binascii
import io
import logging
from functools import lru_cache
from pathlib import Path

import httpx
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

logger = logging.getLogger(__name__)

CARD_SIZE = (640, 360)         # 16:9
IMAGE_FETCH_TIMEOUT_SECONDS = 30.0


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(url: str) -> tuple[bytes, str]:
    """Return ``(bytes, mime_type)`` for a base64 ``data:`` URL."""
    header, sep, body = url.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("not a base64 data URL")
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        return base64.b64decode(body, validate=True), mime_type
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc


def _render_card(title: str, subtitle: str, background: str, foreground: str) -> bytes:
    img = Image.new("RGB", CARD_SIZE, background)
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    w, h = CARD_SIZE
    draw.text((w / 2, h * 0.44), title, fill=foreground, font=font, anchor="mm")
    if subtitle:
        draw.text((w / 2, h * 0.58), subtitle, fill="#9ca3af", font=font, anchor="mm")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@lru_cache(maxsize=1)
def placeholder_image_url() -> str:
    """Marker image for a scene whose image generation failed."""
    png = _render_card("Image generation failed", "Check the server logs for details.", "#1f2937", "#fca5a5")
    return to_data_url(png, "image/png")


@lru_cache(maxsize=1)
def mock_image_url() -> str:
    return to_data_url(_render_card("Mock Scene", "", "#0a3b8c", "#dbeafe"), "image/png")


def read_media_bytes(url: str) -> bytes:
    """Fetch the raw bytes behind a data URL, an http(s) URL or a local path."""
    if url.startswith("data:"):
        data, _ = decode_data_url(url)
        return data
    if url.startswith(("http://", "https://")):
        response = httpx.get(url, timeout=IMAGE_FETCH_TIMEOUT_SECONDS, follow_redirects=True)
        response.raise_for_status()
        return response.content
    return Path(url).read_bytes()


def load_image(url: str) -> Image.Image:
    """
    Load an image referenced by a scene as RGB.

    Raises ``ValueError`` for anything that cannot be fetched or decoded.
    """
    if not url:
        raise ValueError("empty image reference")
    try:
        data = read_media_bytes(url)
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, httpx.HTTPError, UnidentifiedImageError) as exc:
        raise ValueError(f"could not load image {url[:60]!r}: {exc}") from exc
    if img.width <= 0 or img.height <= 0:
        raise ValueError(f"image {url[:60]!r} has no pixels")
    return img.convert("RGB")
