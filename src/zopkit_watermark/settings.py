"""Compositor and store settings, with environment overrides."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .core import DEFAULT_JPEG_QUALITY, DEFAULT_MARGIN_RATIO, DEFAULT_VIDEO_CRF, DEFAULT_VIDEO_PRESET

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path.home() / ".zopkit" / "watermarks.json"


def _read_float(env_name: str, default: float, low: float, high: float) -> float:
    value = os.getenv(env_name)
    if value is None:
        return default
    try:
        parsed = float(value)
        if not low <= parsed <= high:
            raise ValueError
        return parsed
    except ValueError:
        logger.warning("Invalid value for %s: %s. Falling back to %s.", env_name, value, default)
        return default


def _read_int(env_name: str, default: int, low: int, high: int) -> int:
    value = os.getenv(env_name)
    if value is None:
        return default
    try:
        parsed = int(value)
        if not low <= parsed <= high:
            raise ValueError
        return parsed
    except ValueError:
        logger.warning("Invalid value for %s: %s. Falling back to %s.", env_name, value, default)
        return default


@dataclass(frozen=True, slots=True)
class CompositorSettings:
    """Knobs passed explicitly into every compositing call."""

    margin_ratio: float = DEFAULT_MARGIN_RATIO
    font_path: str | None = None
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    video_crf: int = DEFAULT_VIDEO_CRF
    video_preset: str = DEFAULT_VIDEO_PRESET

    def __post_init__(self):
        if not 0.0 <= self.margin_ratio < 0.5:
            raise ValueError(f"Margin ratio must be in [0, 0.5), got {self.margin_ratio}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"JPEG quality must be between 1 and 100, got {self.jpeg_quality}")

    @classmethod
    def from_env(cls) -> "CompositorSettings":
        return cls(
            margin_ratio=_read_float("ZWM_MARGIN_RATIO", DEFAULT_MARGIN_RATIO, 0.0, 0.49),
            font_path=os.getenv("ZWM_FONT_PATH") or None,
            jpeg_quality=_read_int("ZWM_JPEG_QUALITY", DEFAULT_JPEG_QUALITY, 1, 100),
            video_crf=_read_int("ZWM_VIDEO_CRF", DEFAULT_VIDEO_CRF, 0, 51),
            video_preset=os.getenv("ZWM_VIDEO_PRESET", DEFAULT_VIDEO_PRESET),
        )


def default_store_path() -> Path:
    """Location of the persisted watermark collection."""
    value = os.getenv("ZWM_STORE_PATH")
    return Path(value).expanduser() if value else DEFAULT_STORE_PATH
