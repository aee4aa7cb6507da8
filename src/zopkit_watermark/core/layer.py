"""Rendering of watermark layers (transparent RGBA tiles sized to the watermark box)."""

import logging
from io import BytesIO
from pathlib import Path

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from ..config.models import ImageWatermark, TextWatermark, WatermarkConfig
from ..errors import CompositeFailure
from . import DEFAULT_FONT_PATHS, MAX_FONT_SIZE
from .blend import apply_opacity
from .position import WatermarkBox

logger = logging.getLogger(__name__)

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont


def resolve_font_path(font_path: str | None = None) -> str | None:
    """
    Find a usable TrueType font.

    Tries the configured path first, then a few well-known system fonts.
    Returns None when only Pillow's bundled default font is available.
    """
    candidates = ((font_path,) if font_path else ()) + DEFAULT_FONT_PATHS
    for candidate in candidates:
        try:
            ImageFont.truetype(candidate, 12)
        except OSError:
            if candidate == font_path:
                logger.warning("Font %s could not be loaded, falling back to defaults", font_path)
            continue
        return candidate
    return None


def load_font(font_path: str | None, size: int) -> FontType:
    if font_path is None:
        return ImageFont.load_default(size=size)
    return ImageFont.truetype(font_path, size)


def _text_fits(font: FontType, text: str, width: int, height: int) -> bool:
    left, top, right, bottom = font.getbbox(text, anchor="rm")
    # Anchor point is the right edge, vertically centred in the box
    return left + width >= 0 and top + height / 2 >= 0 and right <= 0 and bottom + height / 2 <= height


def fit_font(text: str, width: int, height: int, font_path: str | None) -> FontType:
    """Largest font whose rendering of ``text`` fits inside ``width`` x ``height``."""
    low, high = 1, max(1, min(MAX_FONT_SIZE, height * 2))
    best = 1
    while low <= high:
        size = (low + high) // 2
        if _text_fits(load_font(font_path, size), text, width, height):
            best = size
            low = size + 1
        else:
            high = size - 1
    return load_font(font_path, best)


def render_text_layer(
    text: str,
    color: str,
    width: int,
    height: int,
    font_path: str | None = None,
) -> NDArray[np.uint8]:
    """
    Render text into a transparent RGBA layer.

    The text is collapsed to one line, right-aligned and vertically centred.
    Only the glyph coverage ends up in the alpha channel: there is no
    background fill.
    """
    line = " ".join(text.split())
    font = fit_font(line, width, height, resolve_font_path(font_path))

    # Draw coverage into a mask so antialiased edges keep the text colour
    mask = Image.new("L", (width, height), 0)
    ImageDraw.Draw(mask).text((width, height / 2), line, font=font, fill=255, anchor="rm")

    red, green, blue, alpha = ImageColor.getcolor(color, "RGBA")
    layer = np.zeros((height, width, 4), dtype=np.uint8)
    layer[:, :, 0] = red
    layer[:, :, 1] = green
    layer[:, :, 2] = blue
    coverage = np.asarray(mask, dtype=np.float32) * (alpha / 255.0)
    layer[:, :, 3] = np.clip(np.rint(coverage), 0, 255).astype(np.uint8)
    return layer


def render_image_layer(data: bytes, width: int, height: int) -> NDArray[np.uint8]:
    """
    Scale an encoded overlay image to fit the box and place it bottom-right.

    The overlay keeps its own aspect ratio.

    Raises:
        CompositeFailure: If the overlay cannot be decoded.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            overlay = img.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise CompositeFailure(f"Overlay image could not be decoded: {exc}") from exc

    overlay_w, overlay_h = overlay.size
    ratio = min(width / overlay_w, height / overlay_h)
    new_w = max(1, min(width, round(overlay_w * ratio)))
    new_h = max(1, min(height, round(overlay_h * ratio)))
    if (new_w, new_h) != overlay.size:
        overlay = overlay.resize((new_w, new_h), Image.LANCZOS)

    layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    layer.paste(overlay, (width - new_w, height - new_h))
    return np.array(layer, dtype=np.uint8)


def render_watermark_layer(
    config: WatermarkConfig,
    box: WatermarkBox,
    font_path: str | None = None,
) -> NDArray[np.uint8]:
    """Render ``config`` into an RGBA layer of the box size with its opacity applied."""
    if isinstance(config, TextWatermark):
        layer = render_text_layer(config.content, config.color, box.width, box.height, font_path)
    elif isinstance(config, ImageWatermark):
        layer = render_image_layer(config.content, box.width, box.height)
    else:
        raise CompositeFailure(f"Unsupported watermark kind: {config.kind!r}")

    return apply_opacity(layer, config.opacity)


def font_available(font_path: str | Path | None = None) -> bool:
    """Whether a TrueType font (rather than Pillow's bundled one) will be used."""
    return resolve_font_path(str(font_path) if font_path else None) is not None
