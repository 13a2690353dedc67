"""Request and response shapes for the ingestion and duplicate services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

from media_vault.db import Asset
from media_vault.enums import (
    AssetMediaStatus,
    AssetRejectReason,
    AssetUploadAction,
    AssetVisibility,
    UploadFieldName,
)


@dataclass
class UploadFile:
    """One multipart part as received by the upload endpoint.

    ``size`` is the declared length used for the quota gate. ``original_path``
    and ``checksum`` are filled in once the bytes are persisted.
    """

    field_name: UploadFieldName
    original_name: str
    content: BinaryIO | bytes
    size: int
    uuid: str = field(default_factory=lambda: str(uuid4()))
    original_path: str | None = None
    checksum: bytes | None = None

    @classmethod
    def from_bytes(cls, field_name: UploadFieldName, original_name: str, data: bytes) -> "UploadFile":
        return cls(field_name=field_name, original_name=original_name, content=data, size=len(data))

    @classmethod
    def from_path(cls, field_name: UploadFieldName, path: Path) -> "UploadFile":
        return cls.from_bytes(field_name, path.name, path.read_bytes())


@dataclass
class AssetMediaCreateDto:
    device_asset_id: str
    device_id: str
    file_created_at: datetime
    file_modified_at: datetime
    duration: str | None = None
    filename: str | None = None
    is_favorite: bool = False
    visibility: AssetVisibility = AssetVisibility.TIMELINE
    live_photo_video_id: str | None = None


@dataclass
class AssetMediaReplaceDto:
    device_asset_id: str
    device_id: str
    file_created_at: datetime
    file_modified_at: datetime
    duration: str | None = None
    filename: str | None = None


@dataclass(frozen=True)
class AssetMediaResponse:
    id: str
    status: AssetMediaStatus


@dataclass(frozen=True)
class CheckExistingAssetsDto:
    device_id: str
    device_asset_ids: list[str]


@dataclass(frozen=True)
class AssetBulkUploadCheckItem:
    """``id`` is the client's correlation id; ``checksum`` is hex or base64."""

    id: str
    checksum: str


@dataclass(frozen=True)
class AssetBulkUploadCheckResult:
    id: str
    action: AssetUploadAction
    reason: AssetRejectReason | None = None
    asset_id: str | None = None
    is_trashed: bool | None = None


@dataclass(frozen=True)
class FileResponse:
    path: str
    file_name: str
    content_type: str


@dataclass(frozen=True)
class DuplicateResponse:
    duplicate_id: str
    assets: list[Asset]


__all__ = [
    "UploadFile",
    "AssetMediaCreateDto",
    "AssetMediaReplaceDto",
    "AssetMediaResponse",
    "CheckExistingAssetsDto",
    "AssetBulkUploadCheckItem",
    "AssetBulkUploadCheckResult",
    "FileResponse",
    "DuplicateResponse",
]
