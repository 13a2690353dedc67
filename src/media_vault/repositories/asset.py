"""Repository for asset rows, their EXIF records, and job bookkeeping."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Sequence, Union
from uuid import uuid4

import numpy as np
from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from media_vault.db import ASSET_CHECKSUM_CONSTRAINT, Asset, AssetExif, AssetJobStatus, SmartSearch
from media_vault.db_helpers import chunked, dialect_insert
from media_vault.enums import DUPLICATE_VISIBILITIES
from media_vault.errors import DuplicateChecksumError, InternalServerError, NotFoundError
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "asset_repository"})

_STREAM_BATCH_SIZE = 500


@dataclass(frozen=True)
class Created:
    asset: Asset


@dataclass(frozen=True)
class ConflictExisting:
    """The insert hit the per-owner checksum uniqueness rule."""

    asset_id: str


CreateResult = Union[Created, ConflictExisting]


def is_checksum_violation(error: IntegrityError) -> bool:
    """Return True when ``error`` comes from the per-owner checksum uniqueness rule."""

    message = str(error.orig).lower()
    return ASSET_CHECKSUM_CONSTRAINT in message or "assets.owner_id, assets.checksum" in message


@dataclass(frozen=True)
class DuplicateJobAsset:
    """Projection loaded by the single-asset duplicate detection job."""

    id: str
    owner_id: str
    type: str
    visibility: str
    stack_id: str | None
    duplicate_id: str | None
    deleted_at: float | None
    embedding: np.ndarray | None


class AssetRepository:
    """Persist assets via SQLAlchemy; callers own the transaction boundary."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, **values: Any) -> CreateResult:
        """Insert a new asset row.

        A uniqueness violation on ``(owner_id, checksum)`` is reported as
        :class:`ConflictExisting` carrying the id of the live asset that won.
        The session is rolled back in that case, discarding the whole pending
        unit of work, so callers must not rely on earlier unflushed changes.
        """

        now = time.time()
        values.setdefault("id", str(uuid4()))
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        asset = Asset(**values)
        self._session.add(asset)

        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            if not is_checksum_violation(exc):
                raise
            existing_id = self.get_upload_asset_id_by_checksum(values["owner_id"], values["checksum"])
            if existing_id is None:
                raise InternalServerError("Checksum conflict without a matching asset") from exc
            LOGGER.info(
                "asset_create_checksum_conflict",
                extra={"owner_id": values["owner_id"], "existing_id": existing_id},
            )
            return ConflictExisting(asset_id=existing_id)

        return Created(asset=asset)

    def update(self, asset_id: str, **values: Any) -> Asset:
        """Apply ``values`` to one asset and flush.

        Raises:
            NotFoundError: When the asset does not exist.
            DuplicateChecksumError: When a new checksum collides with another live asset.
        """

        asset = self._session.get(Asset, asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found")

        owner_id = asset.owner_id
        for key, value in values.items():
            setattr(asset, key, value)
        asset.updated_at = time.time()

        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            checksum = values.get("checksum")
            if checksum is None or not is_checksum_violation(exc):
                raise
            existing_id = self.get_upload_asset_id_by_checksum(owner_id, checksum)
            if existing_id is None:
                raise InternalServerError("Checksum conflict without a matching asset") from exc
            raise DuplicateChecksumError(existing_id) from exc

        return asset

    def update_all(self, asset_ids: Sequence[str], **values: Any) -> None:
        if not asset_ids:
            return
        values.setdefault("updated_at", time.time())
        for batch in chunked(list(asset_ids)):
            stmt = (
                update(Asset)
                .where(Asset.id.in_(batch))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            self._session.execute(stmt)

    def get_by_id(self, asset_id: str) -> Asset | None:
        return self._session.get(Asset, asset_id)

    def get_by_ids(self, asset_ids: Sequence[str]) -> list[Asset]:
        rows: list[Asset] = []
        for batch in chunked(list(asset_ids)):
            rows.extend(self._session.execute(select(Asset).where(Asset.id.in_(batch))).scalars())
        return rows

    def get_by_checksums(self, owner_id: str, checksums: Sequence[bytes]) -> list[Asset]:
        """Return trashed and live assets of ``owner_id`` matching any checksum."""

        rows: list[Asset] = []
        for batch in chunked(list(dict.fromkeys(checksums))):
            stmt = select(Asset).where(Asset.owner_id == owner_id, Asset.checksum.in_(batch))
            rows.extend(self._session.execute(stmt).scalars())
        return rows

    def get_upload_asset_id_by_checksum(self, owner_id: str, checksum: bytes) -> str | None:
        """Return the id holding ``checksum`` for ``owner_id``, preferring a live asset."""

        stmt = (
            select(Asset.id)
            .where(Asset.owner_id == owner_id, Asset.checksum == checksum)
            .order_by(Asset.deleted_at.is_not(None), Asset.created_at)
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def get_by_device_ids(self, owner_id: str, device_id: str, device_asset_ids: Sequence[str]) -> list[str]:
        found: list[str] = []
        for batch in chunked(list(device_asset_ids)):
            stmt = select(Asset.device_asset_id).where(
                Asset.owner_id == owner_id,
                Asset.device_id == device_id,
                Asset.device_asset_id.in_(batch),
            )
            found.extend(value for value in self._session.execute(stmt).scalars() if value is not None)
        return found

    def is_linked_live_photo(self, video_id: str) -> bool:
        """Return True when a live asset already pairs with ``video_id``."""

        stmt = select(
            exists().where(Asset.live_photo_video_id == video_id, Asset.deleted_at.is_(None))
        )
        return bool(self._session.execute(stmt).scalar())

    def upsert_exif(self, asset_id: str, **values: Any) -> None:
        row = {"asset_id": asset_id, "updated_at": time.time(), **values}
        insert_stmt = dialect_insert(self._session, AssetExif).values(row)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[AssetExif.asset_id],
            set_={key: insert_stmt.excluded[key] for key in row if key != "asset_id"},
        )
        self._session.execute(stmt)

    def get_exif(self, asset_id: str) -> AssetExif | None:
        return self._session.get(AssetExif, asset_id)

    def upsert_job_status(self, statuses: Iterable[dict[str, Any]]) -> None:
        """Upsert job bookkeeping rows; each dict carries ``asset_id`` plus timestamps."""

        for row in statuses:
            insert_stmt = dialect_insert(self._session, AssetJobStatus).values(row)
            columns = [key for key in row if key != "asset_id"]
            if not columns:
                stmt = insert_stmt.on_conflict_do_nothing(index_elements=[AssetJobStatus.asset_id])
            else:
                stmt = insert_stmt.on_conflict_do_update(
                    index_elements=[AssetJobStatus.asset_id],
                    set_={key: insert_stmt.excluded[key] for key in columns},
                )
            self._session.execute(stmt)

    def get_job_status(self, asset_id: str) -> AssetJobStatus | None:
        return self._session.get(AssetJobStatus, asset_id)

    def get_for_search_duplicates_job(self, asset_id: str) -> DuplicateJobAsset | None:
        stmt = (
            select(Asset, SmartSearch.embedding)
            .outerjoin(SmartSearch, SmartSearch.asset_id == Asset.id)
            .where(Asset.id == asset_id)
        )
        row = self._session.execute(stmt).first()
        if row is None:
            return None

        asset, blob = row
        embedding = np.frombuffer(blob, dtype=np.float32) if blob is not None else None
        return DuplicateJobAsset(
            id=asset.id,
            owner_id=asset.owner_id,
            type=asset.type,
            visibility=asset.visibility,
            stack_id=asset.stack_id,
            duplicate_id=asset.duplicate_id,
            deleted_at=asset.deleted_at,
            embedding=embedding,
        )

    def stream_for_search_duplicates(self, force: bool = False) -> Iterator[str]:
        """Yield ids of assets eligible for duplicate detection.

        Without ``force`` only assets never evaluated, or whose embedding
        changed after their last evaluation, are yielded.
        """

        stmt = (
            select(Asset.id)
            .join(SmartSearch, SmartSearch.asset_id == Asset.id)
            .outerjoin(AssetJobStatus, AssetJobStatus.asset_id == Asset.id)
            .where(
                Asset.deleted_at.is_(None),
                Asset.stack_id.is_(None),
                Asset.visibility.in_([visibility.value for visibility in DUPLICATE_VISIBILITIES]),
            )
            .order_by(Asset.created_at, Asset.id)
            .execution_options(yield_per=_STREAM_BATCH_SIZE)
        )
        if not force:
            stmt = stmt.where(
                or_(
                    AssetJobStatus.duplicates_detected_at.is_(None),
                    AssetJobStatus.duplicates_detected_at < SmartSearch.updated_at,
                )
            )

        for asset_id in self._session.execute(stmt).scalars():
            yield asset_id


__all__ = [
    "AssetRepository",
    "Created",
    "ConflictExisting",
    "CreateResult",
    "DuplicateJobAsset",
]
