from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from zopkit_watermark import MediaArtifact


def gradient_array(width: int, height: int, channels: int = 3) -> np.ndarray:
    """Deterministic gradient so every pixel differs from its neighbours."""
    xs = np.linspace(0, 255, width, dtype=np.float32)[np.newaxis, :]
    ys = np.linspace(0, 255, height, dtype=np.float32)[:, np.newaxis]
    arr = np.zeros((height, width, channels), dtype=np.uint8)
    arr[:, :, 0] = xs.astype(np.uint8)
    arr[:, :, 1] = ys.astype(np.uint8)
    arr[:, :, 2] = 128
    if channels == 4:
        arr[:, :, 3] = 200
    return arr


def encode(arr: np.ndarray, image_format: str = "PNG") -> bytes:
    buffer = BytesIO()
    Image.fromarray(arr).save(buffer, format=image_format)
    return buffer.getvalue()


def decode(data: bytes, mode: str | None = None) -> np.ndarray:
    with Image.open(BytesIO(data)) as img:
        return np.array(img.convert(mode) if mode else img)


@pytest.fixture
def make_png():
    def _make(width: int = 320, height: int = 240, channels: int = 3) -> MediaArtifact:
        return MediaArtifact(data=encode(gradient_array(width, height, channels)), mime_type="image/png")

    return _make


@pytest.fixture
def red_overlay_png() -> bytes:
    overlay = np.zeros((96, 96, 4), dtype=np.uint8)
    overlay[:, :] = (255, 0, 0, 255)
    return encode(overlay)
