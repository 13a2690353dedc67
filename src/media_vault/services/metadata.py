"""Metadata extraction job for uploaded originals."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from PIL import ExifTags, Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from media_vault.enums import AssetType, JobSource, JobStatus
from media_vault.repositories.asset import AssetRepository
from media_vault.repositories.event import ASSET_METADATA_EXTRACTED, EventRepository
from media_vault.storage import StorageRepository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "metadata"})


@dataclass(frozen=True)
class ImageMetadata:
    width: int | None = None
    height: int | None = None
    date_time_original: str | None = None
    make: str | None = None
    model: str | None = None


def read_image_metadata(path: Path) -> ImageMetadata:
    """Read pixel dimensions plus capture time and camera from EXIF."""

    with Image.open(path) as image:
        width, height = image.size
        exif = image.getexif()

    if not exif:
        return ImageMetadata(width=width, height=height)

    by_name: dict[str, object] = {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in exif.items()}
    try:
        sub_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    except KeyError:
        sub_ifd = {}
    for tag_id, value in sub_ifd.items():
        by_name.setdefault(ExifTags.TAGS.get(tag_id, str(tag_id)), value)

    raw_dt = by_name.get("DateTimeOriginal") or by_name.get("DateTime")
    make = by_name.get("Make")
    model = by_name.get("Model")
    return ImageMetadata(
        width=width,
        height=height,
        date_time_original=raw_dt.strip() if isinstance(raw_dt, str) else None,
        make=make.strip("\x00 ") if isinstance(make, str) else None,
        model=model.strip("\x00 ") if isinstance(model, str) else None,
    )


class MetadataService:
    def __init__(
        self,
        *,
        session: Session,
        assets: AssetRepository,
        storage: StorageRepository,
        events: EventRepository,
    ) -> None:
        self._session = session
        self._assets = assets
        self._storage = storage
        self._events = events

    def handle_metadata_extraction(self, asset_id: str, source: str | None = None) -> JobStatus:
        """Refresh the EXIF record of one asset. Safe to run repeatedly."""

        asset = self._assets.get_by_id(asset_id)
        if asset is None:
            LOGGER.warning("metadata_asset_missing", extra={"asset_id": asset_id})
            return JobStatus.FAILED

        path = Path(asset.original_path)
        if not path.exists():
            LOGGER.error("metadata_file_missing", extra={"asset_id": asset_id, "path": str(path)})
            return JobStatus.FAILED

        values: dict[str, object] = {"file_size_in_byte": self._storage.stat(path)}
        if asset.type == AssetType.IMAGE.value:
            try:
                metadata = read_image_metadata(path)
            except (OSError, UnidentifiedImageError) as exc:
                LOGGER.warning("metadata_image_unreadable", extra={"asset_id": asset_id, "error": str(exc)})
            else:
                values.update(
                    exif_image_width=metadata.width,
                    exif_image_height=metadata.height,
                    date_time_original=metadata.date_time_original,
                    make=metadata.make,
                    model=metadata.model,
                )

        self._assets.upsert_exif(asset_id, **values)
        self._assets.upsert_job_status([{"asset_id": asset_id, "metadata_extracted_at": time.time()}])
        self._session.commit()

        self._events.emit(
            ASSET_METADATA_EXTRACTED,
            {"asset_id": asset_id, "user_id": asset.owner_id, "source": source or JobSource.UPLOAD.value},
        )
        LOGGER.info("metadata_extracted", extra={"asset_id": asset_id, "source": source})
        return JobStatus.SUCCESS


__all__ = ["ImageMetadata", "MetadataService", "read_image_metadata"]
