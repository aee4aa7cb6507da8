import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

# MIME type -> Pillow format
IMAGE_FORMATS: dict[str, str] = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
    "image/gif": "GIF",
}

# MIME type -> container file extension understood by ffmpeg
VIDEO_CONTAINERS: dict[str, str] = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-matroska": ".mkv",
    "video/x-msvideo": ".avi",
}

_EXTENSION_MIME_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".gif": "image/gif",
    **{ext: mime for mime, ext in VIDEO_CONTAINERS.items()},
}

SUPPORTED_IMAGE_FORMATS = {ext for ext, mime in _EXTENSION_MIME_TYPES.items() if mime in IMAGE_FORMATS}
SUPPORTED_VIDEO_FORMATS = set(VIDEO_CONTAINERS.values())


@dataclass(frozen=True)
class MediaArtifact:
    """Encoded image or video bytes together with their declared MIME type."""

    data: bytes = field(repr=False)
    mime_type: str

    def __post_init__(self):
        object.__setattr__(self, "mime_type", self.mime_type.split(";")[0].strip().lower())

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path) -> "MediaArtifact":
        return cls(data=path.read_bytes(), mime_type=guess_mime_type(path))


def guess_mime_type(path: Path) -> str:
    """MIME type of a media file, from its extension."""
    mime_type = _EXTENSION_MIME_TYPES.get(path.suffix.lower())
    if mime_type is None:
        mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def extension_for(mime_type: str) -> str:
    """Preferred file extension for a MIME type."""
    if mime_type in VIDEO_CONTAINERS:
        return VIDEO_CONTAINERS[mime_type]
    if mime_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(mime_type) or ""


def is_supported_image(path: Path) -> bool:
    """Check if file is a supported image format."""
    return path.suffix.lower() in SUPPORTED_IMAGE_FORMATS


def is_supported_video(path: Path) -> bool:
    """Check if file is a supported video format."""
    return path.suffix.lower() in SUPPORTED_VIDEO_FORMATS
