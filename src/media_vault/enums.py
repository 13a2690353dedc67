"""String enums shared by the repositories, services, and job runtime."""

from __future__ import annotations

from enum import Enum


class AssetType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class AssetVisibility(str, Enum):
    TIMELINE = "timeline"
    HIDDEN = "hidden"
    LOCKED = "locked"
    ARCHIVE = "archive"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    TRASHED = "trashed"


class UploadFieldName(str, Enum):
    """Multipart field kinds accepted by the upload endpoint."""

    ASSET_DATA = "assetData"
    SIDECAR_DATA = "sidecarData"
    PROFILE_DATA = "file"


class AssetMediaStatus(str, Enum):
    CREATED = "created"
    REPLACED = "replaced"
    DUPLICATE = "duplicate"


class AssetUploadAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class AssetRejectReason(str, Enum):
    DUPLICATE = "duplicate"
    UNSUPPORTED_FORMAT = "unsupported-format"


class Permission(str, Enum):
    ASSET_UPLOAD = "asset.upload"
    ASSET_UPDATE = "asset.update"
    ASSET_READ = "asset.read"
    ASSET_DOWNLOAD = "asset.download"
    DUPLICATE_READ = "duplicate.read"
    DUPLICATE_DELETE = "duplicate.delete"


class JobName(str, Enum):
    """Celery task names; the values are the registered task names."""

    ASSET_EXTRACT_METADATA = "media_vault.asset_extract_metadata"
    FILE_DELETE = "media_vault.file_delete"
    ASSET_DETECT_DUPLICATES = "media_vault.asset_detect_duplicates"
    ASSET_DETECT_DUPLICATES_QUEUE_ALL = "media_vault.asset_detect_duplicates_queue_all"
    ASSET_STORE_EMBEDDING = "media_vault.asset_store_embedding"


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobSource(str, Enum):
    UPLOAD = "upload"
    COPY = "copy"


# Visibilities that take part in duplicate detection.
DUPLICATE_VISIBILITIES: frozenset[AssetVisibility] = frozenset({AssetVisibility.TIMELINE})


__all__ = [
    "AssetType",
    "AssetVisibility",
    "AssetStatus",
    "UploadFieldName",
    "AssetMediaStatus",
    "AssetUploadAction",
    "AssetRejectReason",
    "Permission",
    "JobName",
    "JobStatus",
    "JobSource",
    "DUPLICATE_VISIBILITIES",
]
