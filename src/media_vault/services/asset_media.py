"""Upload, replace, and pre-upload checks for original media files."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy.orm import Session

from media_vault.access import AuthContext, require_access, require_upload_access
from media_vault.config import Settings
from media_vault.db import Asset
from media_vault.dtos import (
    AssetBulkUploadCheckItem,
    AssetBulkUploadCheckResult,
    AssetMediaCreateDto,
    AssetMediaReplaceDto,
    AssetMediaResponse,
    CheckExistingAssetsDto,
    FileResponse,
    UploadFile,
)
from media_vault.enums import (
    AssetMediaStatus,
    AssetRejectReason,
    AssetStatus,
    AssetType,
    AssetUploadAction,
    AssetVisibility,
    JobName,
    JobSource,
    Permission,
    UploadFieldName,
)
from media_vault.errors import (
    BadRequestError,
    DuplicateChecksumError,
    NotFoundError,
)
from media_vault.hasher import from_checksum
from media_vault.mime_types import UploadTypes, asset_type, extension, lookup
from media_vault.repositories.access import AccessRepository
from media_vault.repositories.asset import AssetRepository, ConflictExisting, CreateResult
from media_vault.repositories.event import ASSET_HIDE, ASSET_TRASH, EventRepository
from media_vault.repositories.job import JobItem, JobQueue
from media_vault.repositories.user import UserRepository
from media_vault.storage import StorageFolder, StorageRepository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "asset_media"})

_UNSAFE_EXTENSION = re.compile(r"[^a-z0-9.]")

# Attributes carried from a replaced asset onto its trashed copy.
_COPY_FIELDS: tuple[str, ...] = (
    "owner_id",
    "checksum",
    "original_path",
    "original_file_name",
    "type",
    "device_asset_id",
    "device_id",
    "file_created_at",
    "file_modified_at",
    "local_date_time",
    "duration",
    "is_favorite",
    "sidecar_path",
    "live_photo_video_id",
)


class AssetMediaService:
    """Turn validated uploads into durable assets and schedule derivative work.

    Validation (permission, file kind, quota, live-photo link) completes
    before any byte is written. Bytes are written before the asset row
    commits, the usage ledger is bumped after the commit, and jobs and
    events are dispatched last.
    """

    def __init__(
        self,
        *,
        session: Session,
        assets: AssetRepository,
        users: UserRepository,
        access: AccessRepository,
        storage: StorageRepository,
        jobs: JobQueue,
        events: EventRepository,
        settings: Settings,
    ) -> None:
        self._session = session
        self._assets = assets
        self._users = users
        self._access = access
        self._storage = storage
        self._jobs = jobs
        self._events = events
        self._upload_types = UploadTypes(settings.upload)

    def get_upload_asset_id_by_checksum(self, auth: AuthContext, checksum: str | None) -> AssetMediaResponse | None:
        if not checksum:
            return None

        asset_id = self._assets.get_upload_asset_id_by_checksum(auth.user_id, from_checksum(checksum))
        if asset_id is None:
            return None
        return AssetMediaResponse(id=asset_id, status=AssetMediaStatus.DUPLICATE)

    def can_upload_file(self, auth: AuthContext, file: UploadFile) -> bool:
        require_upload_access(auth)
        if not self._upload_types.is_allowed(file.field_name, file.original_name):
            LOGGER.error(
                "asset_upload_unsupported_type",
                extra={"field_name": file.field_name.value, "file_name": file.original_name},
            )
            raise BadRequestError(f"Unsupported file type {file.original_name}")
        return True

    def get_upload_filename(self, auth: AuthContext, file: UploadFile) -> str:
        self.can_upload_file(auth, file)
        if file.field_name == UploadFieldName.SIDECAR_DATA:
            return f"{file.uuid}.xmp"
        suffix = _UNSAFE_EXTENSION.sub("", extension(file.original_name))
        return f"{file.uuid}{suffix}"

    def get_upload_folder(self, auth: AuthContext, file: UploadFile) -> Path:
        auth = require_upload_access(auth)
        if file.field_name == UploadFieldName.PROFILE_DATA:
            return self._storage.folder(StorageFolder.PROFILE, auth.user_id)
        return self._storage.nested_folder(StorageFolder.UPLOAD, auth.user_id, file.uuid)

    def on_upload_error(self, auth: AuthContext, file: UploadFile) -> None:
        """Queue removal of bytes received for an aborted transfer."""

        path = file.original_path or str(self.get_upload_folder(auth, file) / self.get_upload_filename(auth, file))
        self._jobs.queue(JobItem(JobName.FILE_DELETE, {"files": [path]}))

    def check_existing_assets(self, auth: AuthContext, dto: CheckExistingAssetsDto) -> list[str]:
        return self._assets.get_by_device_ids(auth.user_id, dto.device_id, dto.device_asset_ids)

    def bulk_upload_check(
        self,
        auth: AuthContext,
        items: Sequence[AssetBulkUploadCheckItem],
    ) -> list[AssetBulkUploadCheckResult]:
        """Classify client checksums as accept or duplicate without mutating state."""

        checksums = [from_checksum(item.checksum) for item in items]
        existing: dict[bytes, Asset] = {}
        for asset in self._assets.get_by_checksums(auth.user_id, checksums):
            current = existing.get(asset.checksum)
            if current is None or (current.deleted_at is not None and asset.deleted_at is None):
                existing[asset.checksum] = asset

        results: list[AssetBulkUploadCheckResult] = []
        for item, checksum in zip(items, checksums):
            match = existing.get(checksum)
            if match is None:
                results.append(AssetBulkUploadCheckResult(id=item.id, action=AssetUploadAction.ACCEPT))
                continue
            results.append(
                AssetBulkUploadCheckResult(
                    id=item.id,
                    action=AssetUploadAction.REJECT,
                    reason=AssetRejectReason.DUPLICATE,
                    asset_id=match.id,
                    is_trashed=match.status == AssetStatus.TRASHED.value or match.deleted_at is not None,
                )
            )
        return results

    def upload_asset(
        self,
        auth: AuthContext,
        dto: AssetMediaCreateDto,
        file: UploadFile,
        sidecar_file: UploadFile | None = None,
    ) -> AssetMediaResponse:
        require_access(self._access, auth, Permission.ASSET_UPLOAD, [auth.user_id])
        self._require_field(file, UploadFieldName.ASSET_DATA)
        self.can_upload_file(auth, file)
        if sidecar_file is not None:
            self._require_field(sidecar_file, UploadFieldName.SIDECAR_DATA)
            self.can_upload_file(auth, sidecar_file)
        self._require_quota(auth, file.size)
        motion_asset = self._before_link(auth, dto.live_photo_video_id)

        committed = False
        hidden_motion_id: str | None = None
        try:
            self._persist(auth, file)
            if sidecar_file is not None:
                self._persist(auth, sidecar_file)

            result = self._create(auth.user_id, dto, file, sidecar_file)
            if isinstance(result, ConflictExisting):
                raise DuplicateChecksumError(result.asset_id)
            asset = result.asset
            if motion_asset is not None and motion_asset.visibility == AssetVisibility.TIMELINE.value:
                self._assets.update(motion_asset.id, visibility=AssetVisibility.HIDDEN.value)
                hidden_motion_id = motion_asset.id

            self._session.commit()
            committed = True
        except Exception as exc:
            return self._handle_upload_error(exc, auth, file, sidecar_file, committed=committed)

        self._users.update_usage(auth.user_id, file.size)
        self._session.commit()

        if hidden_motion_id is not None:
            self._events.emit(ASSET_HIDE, {"asset_id": hidden_motion_id, "user_id": auth.user_id})
        self._jobs.queue(
            JobItem(JobName.ASSET_EXTRACT_METADATA, {"asset_id": asset.id, "source": JobSource.UPLOAD.value})
        )

        LOGGER.info("asset_upload_created", extra={"asset_id": asset.id, "owner_id": auth.user_id})
        return AssetMediaResponse(id=asset.id, status=AssetMediaStatus.CREATED)

    def replace_asset(
        self,
        auth: AuthContext,
        asset_id: str,
        dto: AssetMediaReplaceDto,
        file: UploadFile,
        sidecar_file: UploadFile | None = None,
    ) -> AssetMediaResponse:
        """Swap the content behind ``asset_id`` and keep the old content as a trashed copy.

        The existing id keeps pointing at the asset, now with the new bytes.
        The pre-replace state lives on under a new id that is trashed right
        away. The response carries that copy's id.
        """

        require_access(self._access, auth, Permission.ASSET_UPDATE, [asset_id])
        self._require_field(file, UploadFieldName.ASSET_DATA)
        self.can_upload_file(auth, file)
        if sidecar_file is not None:
            self._require_field(sidecar_file, UploadFieldName.SIDECAR_DATA)
            self.can_upload_file(auth, sidecar_file)

        asset = self._assets.get_by_id(asset_id)
        if asset is None or asset.deleted_at is not None:
            raise NotFoundError(f"Asset {asset_id} not found")
        self._require_quota(auth, file.size)

        committed = False
        try:
            self._persist(auth, file)
            if sidecar_file is not None:
                self._persist(auth, sidecar_file)

            snapshot = {name: getattr(asset, name) for name in _COPY_FIELDS}
            self._replace_file_data(asset_id, dto, file, sidecar_file)

            copy_result = self._assets.create(**snapshot)
            if isinstance(copy_result, ConflictExisting):
                raise DuplicateChecksumError(copy_result.asset_id)
            copy = copy_result.asset
            self._assets.upsert_exif(copy.id, file_size_in_byte=self._storage.stat(copy.original_path))
            self._assets.update_all(
                [copy.id],
                status=AssetStatus.TRASHED.value,
                deleted_at=time.time(),
            )

            self._session.commit()
            committed = True
        except Exception as exc:
            return self._handle_upload_error(exc, auth, file, sidecar_file, committed=committed)

        self._users.update_usage(auth.user_id, file.size)
        self._session.commit()

        self._jobs.queue(
            JobItem(JobName.ASSET_EXTRACT_METADATA, {"asset_id": asset_id, "source": JobSource.UPLOAD.value})
        )
        self._events.emit(ASSET_TRASH, {"asset_id": copy.id, "user_id": auth.user_id})
        self._jobs.queue(
            JobItem(JobName.ASSET_EXTRACT_METADATA, {"asset_id": copy.id, "source": JobSource.COPY.value})
        )

        LOGGER.info("asset_replaced", extra={"asset_id": asset_id, "copy_id": copy.id})
        return AssetMediaResponse(id=copy.id, status=AssetMediaStatus.REPLACED)

    def download_original(self, auth: AuthContext, asset_id: str) -> FileResponse:
        require_access(self._access, auth, Permission.ASSET_DOWNLOAD, [asset_id])

        asset = self._assets.get_by_id(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return FileResponse(
            path=asset.original_path,
            file_name=asset.original_file_name,
            content_type=lookup(asset.original_path),
        )

    def _require_field(self, file: UploadFile, expected: UploadFieldName) -> None:
        if file.field_name != expected:
            raise BadRequestError(f"Expected {expected.value} upload, got {file.field_name.value}")

    def _require_quota(self, auth: AuthContext, size: int) -> None:
        user = self._users.get(auth.user_id)
        if user is None:
            raise NotFoundError(f"User {auth.user_id} not found")

        quota = user.quota_size_in_bytes
        if quota is not None and quota < user.quota_usage_in_bytes + size:
            LOGGER.info(
                "asset_upload_quota_exceeded",
                extra={"user_id": user.id, "quota": quota, "usage": user.quota_usage_in_bytes, "size": size},
            )
            raise BadRequestError("Quota has been exceeded!")

    def _before_link(self, auth: AuthContext, live_photo_video_id: str | None) -> Asset | None:
        if not live_photo_video_id:
            return None

        motion_asset = self._assets.get_by_id(live_photo_video_id)
        if motion_asset is None or motion_asset.deleted_at is not None:
            raise BadRequestError("Live photo video not found")
        if motion_asset.type != AssetType.VIDEO.value:
            raise BadRequestError("Live photo video must be a video")
        if motion_asset.owner_id != auth.user_id:
            raise BadRequestError("Live photo video does not belong to the user")
        if self._assets.is_linked_live_photo(motion_asset.id):
            raise BadRequestError("Live photo video is already linked")
        return motion_asset

    def _persist(self, auth: AuthContext, file: UploadFile) -> None:
        path = self.get_upload_folder(auth, file) / self.get_upload_filename(auth, file)
        stored = self._storage.write(path, file.content)
        file.original_path = str(stored.path)
        file.checksum = stored.checksum
        if stored.size != file.size:
            raise BadRequestError(f"Upload size mismatch: declared {file.size}, received {stored.size}")

    def _create(
        self,
        owner_id: str,
        dto: AssetMediaCreateDto,
        file: UploadFile,
        sidecar_file: UploadFile | None,
    ) -> CreateResult:
        values: dict[str, Any] = {
            "owner_id": owner_id,
            "checksum": file.checksum,
            "original_path": file.original_path,
            "original_file_name": dto.filename or file.original_name,
            "type": _asset_type_value(file.original_name),
            "device_asset_id": dto.device_asset_id,
            "device_id": dto.device_id,
            "file_created_at": dto.file_created_at,
            "file_modified_at": dto.file_modified_at,
            "local_date_time": dto.file_created_at,
            "duration": dto.duration,
            "is_favorite": dto.is_favorite,
            "visibility": AssetVisibility(dto.visibility).value,
            "live_photo_video_id": dto.live_photo_video_id,
            "sidecar_path": sidecar_file.original_path if sidecar_file else None,
        }
        result = self._assets.create(**values)
        if isinstance(result, ConflictExisting):
            return result

        asset = result.asset
        if sidecar_file is not None and sidecar_file.original_path:
            self._storage.utimes(sidecar_file.original_path, _now(), dto.file_modified_at)
        self._storage.utimes(asset.original_path, _now(), dto.file_modified_at)
        self._assets.upsert_exif(asset.id, file_size_in_byte=file.size)
        return result

    def _replace_file_data(
        self,
        asset_id: str,
        dto: AssetMediaReplaceDto,
        file: UploadFile,
        sidecar_file: UploadFile | None,
    ) -> None:
        self._assets.update(
            asset_id,
            checksum=file.checksum,
            original_path=file.original_path,
            type=_asset_type_value(file.original_name),
            original_file_name=dto.filename or file.original_name,
            device_asset_id=dto.device_asset_id,
            device_id=dto.device_id,
            file_created_at=dto.file_created_at,
            file_modified_at=dto.file_modified_at,
            local_date_time=dto.file_created_at,
            duration=dto.duration,
            live_photo_video_id=None,
            sidecar_path=sidecar_file.original_path if sidecar_file else None,
        )
        if sidecar_file is not None and sidecar_file.original_path:
            self._storage.utimes(sidecar_file.original_path, _now(), dto.file_modified_at)
        if file.original_path:
            self._storage.utimes(file.original_path, _now(), dto.file_modified_at)
        self._assets.upsert_exif(asset_id, file_size_in_byte=file.size)

    def _handle_upload_error(
        self,
        error: Exception,
        auth: AuthContext,
        file: UploadFile,
        sidecar_file: UploadFile | None,
        *,
        committed: bool,
    ) -> AssetMediaResponse:
        if not committed:
            self._session.rollback()
            paths = [item.original_path for item in (file, sidecar_file) if item is not None and item.original_path]
            if paths:
                self._jobs.queue(JobItem(JobName.FILE_DELETE, {"files": paths}))

        if isinstance(error, DuplicateChecksumError):
            LOGGER.info("asset_upload_duplicate", extra={"asset_id": error.asset_id, "user_id": auth.user_id})
            return AssetMediaResponse(id=error.asset_id, status=AssetMediaStatus.DUPLICATE)

        LOGGER.error(
            "asset_upload_error",
            extra={"user_id": auth.user_id, "error": str(error)},
            exc_info=not isinstance(error, BadRequestError),
        )
        raise error


def _asset_type_value(filename: str) -> str:
    kind = asset_type(filename)
    if kind is None:
        raise BadRequestError(f"Unsupported file type {filename}")
    return kind.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["AssetMediaService"]
