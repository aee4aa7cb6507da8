from dataclasses import dataclass

from ..errors import CompositeFailure
from . import DEFAULT_MARGIN_RATIO, MIN_BOX_SIZE, MIN_MARGIN


@dataclass(frozen=True)
class WatermarkBox:
    """Represents the watermark bounding box inside the host media."""

    x: int
    y: int
    width: int
    height: int
    margin: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


def calculate_margin(image_width: int, image_height: int, margin_ratio: float = DEFAULT_MARGIN_RATIO) -> int:
    """Margin from the right and bottom edges, relative to the shorter side."""
    shorter = min(image_width, image_height)
    return max(MIN_MARGIN, round(shorter * margin_ratio))


def calculate_watermark_box(
    image_width: int,
    image_height: int,
    scale: float,
    margin_ratio: float = DEFAULT_MARGIN_RATIO,
) -> WatermarkBox:
    """
    Calculate the watermark box for the given host dimensions.

    The box is anchored at the bottom-right corner, sized as
    ``scale * min(width, height)`` and kept ``margin`` pixels away from both
    edges. Sizes that would not fit are clamped to the largest box that keeps
    the margins intact, so the box never exceeds
    ``(width - 2 * margin) x (height - 2 * margin)``.

    Raises:
        CompositeFailure: If the host is too small to hold any box.
    """
    margin = calculate_margin(image_width, image_height, margin_ratio)

    max_width = image_width - 2 * margin
    max_height = image_height - 2 * margin
    if max_width < MIN_BOX_SIZE or max_height < MIN_BOX_SIZE:
        raise CompositeFailure(
            f"Media of {image_width}x{image_height} is too small for a watermark"
        )

    side = max(MIN_BOX_SIZE, round(scale * min(image_width, image_height)))
    width = min(side, max_width)
    height = min(side, max_height)

    x = image_width - margin - width
    y = image_height - margin - height

    return WatermarkBox(x=x, y=y, width=width, height=height, margin=margin)
