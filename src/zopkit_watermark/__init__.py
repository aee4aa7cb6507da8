"""Burn user-defined watermarks into generated images and videos."""

import logging

from .artifact import MediaArtifact
from .compositor import WatermarkCompositor
from .config import (
    NO_WATERMARK,
    Anchor,
    ImageWatermark,
    JsonFileBackend,
    MemoryBackend,
    TextWatermark,
    WatermarkConfig,
    WatermarkConfigStore,
)
from .errors import (
    CompositeCancelled,
    CompositeFailure,
    ConfigNotFound,
    DecodeFailure,
    PersistenceFailure,
    WatermarkError,
)
from .settings import CompositorSettings

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "MediaArtifact",
    "WatermarkCompositor",
    "CompositorSettings",
    "NO_WATERMARK",
    "Anchor",
    "WatermarkConfig",
    "TextWatermark",
    "ImageWatermark",
    "WatermarkConfigStore",
    "JsonFileBackend",
    "MemoryBackend",
    "WatermarkError",
    "ConfigNotFound",
    "DecodeFailure",
    "CompositeFailure",
    "CompositeCancelled",
    "PersistenceFailure",
]
