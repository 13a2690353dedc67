"""Extension tables for accepted upload kinds."""

from __future__ import annotations

from pathlib import PurePath

from media_vault.config import UploadConfig
from media_vault.enums import AssetType, UploadFieldName

IMAGE_EXTENSIONS: dict[str, str] = {
    ".3fr": "image/x-hasselblad-3fr",
    ".arw": "image/x-sony-arw",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".cr2": "image/x-canon-cr2",
    ".cr3": "image/x-canon-cr3",
    ".dng": "image/x-adobe-dng",
    ".gif": "image/gif",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".jpeg": "image/jpeg",
    ".jpg": "image/jpeg",
    ".jxl": "image/jxl",
    ".nef": "image/x-nikon-nef",
    ".orf": "image/x-olympus-orf",
    ".png": "image/png",
    ".raf": "image/x-fuji-raf",
    ".rw2": "image/x-panasonic-rw2",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}

VIDEO_EXTENSIONS: dict[str, str] = {
    ".3gp": "video/3gpp",
    ".avi": "video/x-msvideo",
    ".flv": "video/x-flv",
    ".m2ts": "video/mp2t",
    ".m4v": "video/x-m4v",
    ".mkv": "video/x-matroska",
    ".mov": "video/quicktime",
    ".mp4": "video/mp4",
    ".mpg": "video/mpeg",
    ".mts": "video/mp2t",
    ".webm": "video/webm",
    ".wmv": "video/x-ms-wmv",
}

SIDECAR_EXTENSIONS: dict[str, str] = {".xmp": "application/xml"}

PROFILE_EXTENSIONS: dict[str, str] = {
    ".jpeg": "image/jpeg",
    ".jpg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def extension(filename: str) -> str:
    return PurePath(filename).suffix.lower()


def lookup(filename: str) -> str:
    ext = extension(filename)
    for table in (IMAGE_EXTENSIONS, VIDEO_EXTENSIONS, SIDECAR_EXTENSIONS):
        if ext in table:
            return table[ext]
    return "application/octet-stream"


def asset_type(filename: str) -> AssetType | None:
    ext = extension(filename)
    if ext in IMAGE_EXTENSIONS:
        return AssetType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return AssetType.VIDEO
    return None


class UploadTypes:
    """Accepted extensions per upload field, honoring configured overrides."""

    def __init__(self, config: UploadConfig | None = None) -> None:
        config = config or UploadConfig()
        self._allowed: dict[UploadFieldName, frozenset[str]] = {
            UploadFieldName.ASSET_DATA: frozenset(config.asset_extensions)
            or frozenset(IMAGE_EXTENSIONS) | frozenset(VIDEO_EXTENSIONS),
            UploadFieldName.SIDECAR_DATA: frozenset(config.sidecar_extensions) or frozenset(SIDECAR_EXTENSIONS),
            UploadFieldName.PROFILE_DATA: frozenset(config.profile_extensions) or frozenset(PROFILE_EXTENSIONS),
        }

    def is_allowed(self, field_name: UploadFieldName, filename: str) -> bool:
        return extension(filename) in self._allowed[field_name]


__all__ = [
    "IMAGE_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "SIDECAR_EXTENSIONS",
    "PROFILE_EXTENSIONS",
    "extension",
    "lookup",
    "asset_type",
    "UploadTypes",
]
