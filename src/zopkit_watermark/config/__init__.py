from .models import (
    NO_WATERMARK,
    Anchor,
    ImageWatermark,
    TextWatermark,
    WatermarkConfig,
    new_watermark_id,
    watermark_from_record,
)
from .store import ConfigBackend, JsonFileBackend, MemoryBackend, WatermarkConfigStore

__all__ = [
    "NO_WATERMARK",
    "Anchor",
    "WatermarkConfig",
    "TextWatermark",
    "ImageWatermark",
    "new_watermark_id",
    "watermark_from_record",
    "ConfigBackend",
    "JsonFileBackend",
    "MemoryBackend",
    "WatermarkConfigStore",
]
