import logging
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..artifact import IMAGE_FORMATS, MediaArtifact
from ..config.models import WatermarkConfig
from ..core.blend import apply_watermark
from ..core.layer import render_watermark_layer
from ..core.position import calculate_watermark_box
from ..errors import CompositeFailure, DecodeFailure
from ..settings import CompositorSettings

logger = logging.getLogger(__name__)

# Formats that can carry the source colour profile and EXIF block through a re-encode
_METADATA_FORMATS = {"PNG", "JPEG", "WEBP"}

# Palette lookups are done in chunks of this many colours to bound memory
_PALETTE_CHUNK = 4096


@dataclass(frozen=True)
class SourcePalette:
    """Index plane and colour table of a palette-based source image."""

    indices: np.ndarray
    colors: np.ndarray
    size: int
    transparency: int | None = None


def _read_palette(img: Image.Image) -> SourcePalette:
    colors = np.zeros((256, 3), dtype=np.uint8)
    if img.mode == "L":
        colors[:] = np.arange(256, dtype=np.uint8)[:, np.newaxis]
        size = 256
    else:
        values = np.array(img.getpalette("RGB") or [], dtype=np.uint8).reshape(-1, 3)[:256]
        colors[: len(values)] = values
        size = len(values)

    transparency = img.info.get("transparency")
    return SourcePalette(
        indices=np.array(img, dtype=np.uint8),
        colors=colors,
        size=size,
        transparency=transparency if isinstance(transparency, int) else None,
    )


def _nearest_indices(pixels: np.ndarray, palette: SourcePalette) -> np.ndarray:
    candidates = palette.colors[: palette.size].astype(np.int32)
    result = np.empty(len(pixels), dtype=np.uint8)
    for start in range(0, len(pixels), _PALETTE_CHUNK):
        chunk = pixels[start : start + _PALETTE_CHUNK].astype(np.int32)
        distances = ((chunk[:, np.newaxis, :] - candidates[np.newaxis, :, :]) ** 2).sum(axis=2)
        if palette.transparency is not None and palette.transparency < palette.size:
            distances[:, palette.transparency] = np.iinfo(np.int32).max
        result[start : start + len(chunk)] = distances.argmin(axis=1)
    return result


def _to_source_palette(image_array: np.ndarray, palette: SourcePalette) -> Image.Image:
    """
    Map composited pixels back onto the source palette.

    Pixels the watermark left alone keep their original index, so they decode
    to exactly the same colour. Changed pixels take the nearest palette colour;
    where the result is mostly transparent they take the transparent index.
    """
    indices = palette.indices.copy()
    changed = np.any(image_array[..., :3] != palette.colors[indices], axis=-1)

    opaque = None
    if image_array.shape[-1] == 4 and palette.transparency is not None:
        opaque = image_array[..., 3] >= 128
        changed |= opaque != (indices != palette.transparency)

    if changed.any():
        indices[changed] = _nearest_indices(image_array[..., :3][changed], palette)
        if opaque is not None:
            indices[changed & ~opaque] = palette.transparency

    height, width = indices.shape
    result_image = Image.frombytes("P", (width, height), indices.tobytes())
    result_image.putpalette(palette.colors.tobytes())
    return result_image


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def decode_image(artifact: MediaArtifact) -> tuple[np.ndarray, dict]:
    """
    Decode an image artifact into an RGB or RGBA pixel array.

    Returns:
        The pixel array and the metadata to carry into the re-encoded image

    Raises:
        DecodeFailure: If the MIME type is unsupported or the data is unreadable
    """
    if artifact.mime_type not in IMAGE_FORMATS:
        raise DecodeFailure(f"Unsupported image type: {artifact.mime_type}")

    try:
        with Image.open(BytesIO(artifact.data)) as img:
            img.load()
            # Convert to RGB/RGBA (handles palette, greyscale, CMYK, etc.)
            mode = "RGBA" if _has_alpha(img) else "RGB"
            metadata = {
                key: img.info[key] for key in ("icc_profile", "exif") if img.info.get(key)
            }
            if IMAGE_FORMATS[artifact.mime_type] == "GIF" and img.mode in ("P", "L"):
                palette = _read_palette(img)
                if palette.size:
                    metadata["palette"] = palette
            image_array = np.array(img.convert(mode), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeFailure(f"Could not decode {artifact.mime_type} image: {exc}") from exc

    return image_array, metadata


def encode_image(
    image_array: np.ndarray,
    mime_type: str,
    metadata: dict | None = None,
    jpeg_quality: int = 95,
) -> bytes:
    """Encode pixels in the format of ``mime_type``; lossless wherever the format allows."""
    image_format = IMAGE_FORMATS[mime_type]
    metadata = metadata or {}
    palette = metadata.get("palette")

    options: dict = {}
    if image_format == "GIF" and palette is not None:
        result_image = _to_source_palette(image_array, palette)
        if palette.transparency is not None:
            options["transparency"] = palette.transparency
    else:
        result_image = Image.fromarray(image_array)

    if image_format in _METADATA_FORMATS:
        options.update((key, metadata[key]) for key in ("icc_profile", "exif") if key in metadata)
    if image_format == "JPEG":
        if result_image.mode != "RGB":
            result_image = result_image.convert("RGB")
        options.update(quality=jpeg_quality, subsampling=0)
    elif image_format == "WEBP":
        options.update(lossless=True, exact=True)

    buffer = BytesIO()
    try:
        result_image.save(buffer, format=image_format, **options)
    except (OSError, ValueError, KeyError) as exc:
        raise CompositeFailure(f"Could not encode {mime_type} image: {exc}") from exc
    return buffer.getvalue()


def composite_image(
    artifact: MediaArtifact,
    config: WatermarkConfig,
    settings: CompositorSettings,
) -> MediaArtifact:
    """
    Burn a watermark into a still image.

    Decode -> composite into the bottom-right box -> re-encode in the same format.
    The source artifact is left untouched.

    Args:
        artifact: Encoded source image
        config: Watermark to apply
        settings: Compositor settings (margin, font, encoder quality)

    Returns:
        New artifact with the same MIME type and dimensions
    """
    image_array, metadata = decode_image(artifact)

    height, width = image_array.shape[:2]
    box = calculate_watermark_box(width, height, config.scale, settings.margin_ratio)
    layer = render_watermark_layer(config, box, settings.font_path)
    logger.debug(
        "Compositing %s watermark %s into %dx%d image at %s",
        config.kind, config.id, width, height, box,
    )

    try:
        result_array = apply_watermark(image_array, layer, box)
    except ValueError as exc:
        raise CompositeFailure(str(exc)) from exc

    data = encode_image(result_array, artifact.mime_type, metadata, settings.jpeg_quality)
    return MediaArtifact(data=data, mime_type=artifact.mime_type)
