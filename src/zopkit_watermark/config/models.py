"""Watermark definitions.

A watermark is either a text overlay or an image overlay. Both share the
placement fields; the variant decides what ``content`` holds, so an image
config can never carry text content and vice versa.
"""

import base64
import binascii
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from PIL import ImageColor

from ..core import DEFAULT_TEXT_COLOR

NO_WATERMARK = "none"


class Anchor(str, Enum):
    """Corner of the media the watermark is anchored to.

    Only the bottom-right safe zone is reserved for watermarks.
    """

    BOTTOM_RIGHT = "bottom-right"


def new_watermark_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, kw_only=True)
class WatermarkConfig:
    """Placement fields shared by every watermark kind."""

    kind: ClassVar[str]

    id: str = field(default_factory=new_watermark_id)
    position: Anchor = Anchor.BOTTOM_RIGHT
    opacity: float = 0.8
    scale: float = 0.25

    def __post_init__(self):
        if getattr(type(self), "kind", None) is None:
            raise TypeError(
                f"{type(self).__name__} is not a watermark kind; use one of {sorted(WATERMARK_KINDS)}"
            )
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Watermark id cannot be empty")
        if self.id == NO_WATERMARK:
            raise ValueError(f"{NO_WATERMARK!r} is reserved and cannot be used as a watermark id")

        # Accept the serialised anchor name as well
        object.__setattr__(self, "position", Anchor(self.position))

        opacity = float(self.opacity)
        if math.isnan(opacity) or not 0.0 <= opacity <= 1.0:
            raise ValueError(f"Opacity must be between 0 and 1, got {self.opacity}")
        object.__setattr__(self, "opacity", opacity)

        scale = float(self.scale)
        if not math.isfinite(scale) or scale <= 0:
            raise ValueError(f"Scale must be a positive number, got {self.scale}")
        object.__setattr__(self, "scale", scale)

    def _common_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "position": self.position.value,
            "opacity": self.opacity,
            "scale": self.scale,
        }

    def to_record(self) -> dict[str, Any]:
        """Return a JSON-compatible dict holding every field."""
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class TextWatermark(WatermarkConfig):
    """Text rendered in the safe zone."""

    kind: ClassVar[str] = "text"

    content: str
    color: str = DEFAULT_TEXT_COLOR

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValueError("Watermark text cannot be empty")
        # Raises ValueError for unknown colours
        ImageColor.getrgb(self.color)

    def to_record(self) -> dict[str, Any]:
        return {**self._common_record(), "content": self.content, "color": self.color}


@dataclass(frozen=True, kw_only=True)
class ImageWatermark(WatermarkConfig):
    """Encoded overlay image (PNG, JPEG, ...) scaled into the safe zone."""

    kind: ClassVar[str] = "image"

    content: bytes = field(repr=False)

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.content, (bytes, bytearray)) or not self.content:
            raise ValueError("Watermark image cannot be empty")
        object.__setattr__(self, "content", bytes(self.content))

    def to_record(self) -> dict[str, Any]:
        encoded = base64.b64encode(self.content).decode("ascii")
        return {**self._common_record(), "content": encoded}


WATERMARK_KINDS: dict[str, type[WatermarkConfig]] = {
    TextWatermark.kind: TextWatermark,
    ImageWatermark.kind: ImageWatermark,
}


def watermark_from_record(record: dict[str, Any]) -> WatermarkConfig:
    """
    Rebuild a watermark from a record produced by ``to_record``.

    Raises:
        ValueError: If the record has an unknown kind or invalid fields.
    """
    if not isinstance(record, dict):
        raise ValueError(f"Watermark record must be an object, got {type(record).__name__}")

    kind = record.get("kind")
    if kind not in WATERMARK_KINDS:
        raise ValueError(f"Unknown watermark kind: {kind!r}")

    try:
        common = {
            "id": record["id"],
            "position": record.get("position", Anchor.BOTTOM_RIGHT.value),
            "opacity": record["opacity"],
            "scale": record["scale"],
        }
        if kind == TextWatermark.kind:
            return TextWatermark(
                content=record["content"],
                color=record.get("color", DEFAULT_TEXT_COLOR),
                **common,
            )
        content = base64.b64decode(record["content"], validate=True)
        return ImageWatermark(content=content, **common)
    except (KeyError, TypeError, binascii.Error) as exc:
        raise ValueError(f"Invalid {kind} watermark record: {exc}") from exc
