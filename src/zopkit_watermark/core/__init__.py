# Safe-zone geometry
# The bottom-right corner is reserved for the watermark; the margin keeps the
# mark off the border and is expressed relative to the shorter image side.
DEFAULT_MARGIN_RATIO: float = 0.02  # 2% of the shorter dimension
MIN_MARGIN: int = 1  # Never let the mark touch the border
MIN_BOX_SIZE: int = 1

# Text rendering
DEFAULT_TEXT_COLOR: str = "#FFFFFF"
DEFAULT_FONT_PATHS: tuple[str, ...] = (
    "DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "arial.ttf",
)
MAX_FONT_SIZE: int = 2048

# Encoding
DEFAULT_JPEG_QUALITY: int = 95

# Video encoding
DEFAULT_VIDEO_CRF: int = 18
DEFAULT_VIDEO_PRESET: str = "medium"

# Video bitrate tiers (in bits per second), used when the source bitrate is unknown
BITRATE_720P: int = 8_000_000  # 8 Mbps
BITRATE_1080P: int = 15_000_000  # 15 Mbps
BITRATE_4K: int = 40_000_000  # 40 Mbps
BITRATE_HIGHER: int = 60_000_000  # 60 Mbps

# Resolution thresholds (pixels)
PIXELS_720P: int = 1280 * 720  # 921,600
PIXELS_1080P: int = 1920 * 1080  # 2,073,600
PIXELS_4K: int = 3840 * 2160  # 8,294,400
