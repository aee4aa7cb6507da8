from .image import composite_image, decode_image, encode_image
from .video import composite_video, get_video_info

__all__ = [
    "composite_image",
    "composite_video",
    "decode_image",
    "encode_image",
    "get_video_info",
]
