"""Duplicate cluster maintenance driven by embedding similarity."""

from __future__ import annotations

import time
from typing import Callable, Sequence
from uuid import uuid4

import numpy as np
from sqlalchemy.orm import Session

from media_vault.access import AuthContext, require_access
from media_vault.config import Settings
from media_vault.dtos import DuplicateResponse
from media_vault.enums import DUPLICATE_VISIBILITIES, AssetVisibility, JobName, JobStatus, Permission
from media_vault.repositories.access import AccessRepository
from media_vault.repositories.asset import AssetRepository, DuplicateJobAsset
from media_vault.repositories.duplicate import DuplicateRepository, DuplicateSearchHit
from media_vault.repositories.event import ASSET_DUPLICATES_UPDATED, EventRepository
from media_vault.repositories.job import JobItem, JobQueue
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "duplicate"})


def select_target_id(
    subject_duplicate_id: str | None,
    hits: Sequence[DuplicateSearchHit],
    new_id: Callable[[], str] = lambda: str(uuid4()),
) -> str:
    """Pick the cluster every matched asset should end up in.

    The subject's own cluster wins. Otherwise the cluster of the closest
    hit that has one is used, ties at equal distance going to the
    lexicographically smallest cluster id. Only when nothing is clustered
    yet is a fresh id minted.
    """

    if subject_duplicate_id:
        return subject_duplicate_id

    clustered = [hit for hit in hits if hit.duplicate_id]
    if clustered:
        closest = min(clustered, key=lambda hit: (hit.distance, hit.duplicate_id))
        return str(closest.duplicate_id)
    return new_id()


class DuplicateService:
    """Evaluate one asset at a time against the duplicate index.

    Merges are transitive: when the subject matches members of several
    clusters, all of them fold into one target cluster, so evaluation order
    across parallel jobs never leaves two clusters for one group.
    """

    def __init__(
        self,
        *,
        session: Session,
        assets: AssetRepository,
        duplicates: DuplicateRepository,
        access: AccessRepository,
        jobs: JobQueue,
        events: EventRepository,
        settings: Settings,
        new_id: Callable[[], str] | None = None,
    ) -> None:
        self._session = session
        self._assets = assets
        self._duplicates = duplicates
        self._access = access
        self._jobs = jobs
        self._events = events
        self._settings = settings
        self._new_id = new_id or (lambda: str(uuid4()))

    def get_duplicates(self, auth: AuthContext) -> list[DuplicateResponse]:
        require_access(self._access, auth, Permission.DUPLICATE_READ, [])
        groups = self._duplicates.get_all([auth.user_id])
        responses: list[DuplicateResponse] = []
        for group in groups:
            assets = self._assets.get_by_ids(group.asset_ids)
            order = {asset_id: index for index, asset_id in enumerate(group.asset_ids)}
            assets.sort(key=lambda asset: order[asset.id])
            responses.append(DuplicateResponse(duplicate_id=group.duplicate_id, assets=assets))
        return responses

    def delete_duplicate(self, auth: AuthContext, duplicate_id: str) -> None:
        self.delete_duplicates(auth, [duplicate_id])

    def delete_duplicates(self, auth: AuthContext, duplicate_ids: Sequence[str]) -> None:
        """Dismiss clusters; their members stay as ordinary assets."""

        require_access(self._access, auth, Permission.DUPLICATE_DELETE, duplicate_ids)
        self._duplicates.delete(auth.user_id, duplicate_ids)
        self._session.commit()
        LOGGER.info("duplicate_deleted", extra={"user_id": auth.user_id, "duplicate_ids": list(duplicate_ids)})

    def store_embedding(self, asset_id: str, embedding: Sequence[float] | np.ndarray) -> JobStatus:
        """Record the model output for an asset and schedule its duplicate evaluation."""

        if self._assets.get_by_id(asset_id) is None:
            LOGGER.error("duplicate_embedding_asset_missing", extra={"asset_id": asset_id})
            return JobStatus.FAILED

        self._duplicates.upsert_embedding(asset_id, embedding)
        self._session.commit()

        if self._settings.is_duplicate_detection_enabled():
            self._jobs.queue(JobItem(JobName.ASSET_DETECT_DUPLICATES, {"asset_id": asset_id}))
        return JobStatus.SUCCESS

    def handle_queue_search_duplicates(self, force: bool = False) -> JobStatus:
        """Queue a single-asset duplicate job for every candidate asset.

        Candidates are streamed from the database and dispatched in batches,
        so the full candidate set is never held in memory.
        """

        if not self._settings.is_duplicate_detection_enabled():
            LOGGER.info("duplicate_queue_all_disabled", extra={"force": force})
            return JobStatus.SKIPPED

        batch_size = self._settings.queues.backfill_batch_size
        batch: list[JobItem] = []
        total = 0
        for asset_id in self._assets.stream_for_search_duplicates(force=force):
            batch.append(JobItem(JobName.ASSET_DETECT_DUPLICATES, {"asset_id": asset_id}))
            if len(batch) >= batch_size:
                self._jobs.queue_all(batch)
                total += len(batch)
                batch = []

        if batch:
            self._jobs.queue_all(batch)
            total += len(batch)

        LOGGER.info("duplicate_queue_all_complete", extra={"force": force, "queued": total})
        return JobStatus.SUCCESS

    def handle_search_duplicates(self, asset_id: str) -> JobStatus:
        if not self._settings.is_duplicate_detection_enabled():
            return JobStatus.SKIPPED

        asset = self._assets.get_for_search_duplicates_job(asset_id)
        if asset is None:
            LOGGER.error("duplicate_asset_missing", extra={"asset_id": asset_id})
            return JobStatus.FAILED

        if asset.stack_id:
            LOGGER.debug("duplicate_skip_stacked", extra={"asset_id": asset_id, "stack_id": asset.stack_id})
            return JobStatus.SKIPPED

        if asset.deleted_at is not None or AssetVisibility(asset.visibility) not in DUPLICATE_VISIBILITIES:
            LOGGER.debug("duplicate_skip_not_visible", extra={"asset_id": asset_id, "visibility": asset.visibility})
            return JobStatus.SKIPPED

        if asset.embedding is None:
            LOGGER.error("duplicate_embedding_missing", extra={"asset_id": asset_id})
            return JobStatus.FAILED

        hits = self._duplicates.search(
            asset_id=asset.id,
            embedding=asset.embedding,
            max_distance=self._settings.machine_learning.duplicate_detection.max_distance,
            type=asset.type,
            owner_ids=[asset.owner_id],
        )

        changed = bool(hits)
        try:
            if hits:
                touched = self._update_duplicates(asset, hits)
            else:
                touched = [asset.id]
                if asset.duplicate_id:
                    self._assets.update(asset.id, duplicate_id=None)
                    cleared = self._duplicates.dissolve_singletons([asset.duplicate_id])
                    touched.extend(asset_id for asset_id in cleared if asset_id != asset.id)
                    changed = True
                    LOGGER.info(
                        "duplicate_removed_from_cluster",
                        extra={"asset_id": asset.id, "duplicate_id": asset.duplicate_id, "cleared": len(cleared)},
                    )

            now = time.time()
            self._assets.upsert_job_status(
                {"asset_id": touched_id, "duplicates_detected_at": now} for touched_id in touched
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        if changed:
            self._events.emit(ASSET_DUPLICATES_UPDATED, {"asset_id": asset.id, "user_id": asset.owner_id})
        return JobStatus.SUCCESS

    def _update_duplicates(self, asset: DuplicateJobAsset, hits: Sequence[DuplicateSearchHit]) -> list[str]:
        target_id = select_target_id(asset.duplicate_id, hits, self._new_id)

        source_ids: list[str] = []
        for hit in hits:
            if hit.duplicate_id and hit.duplicate_id != target_id and hit.duplicate_id not in source_ids:
                source_ids.append(hit.duplicate_id)

        asset_ids: list[str] = []
        if asset.duplicate_id != target_id:
            asset_ids.append(asset.id)
        asset_ids.extend(hit.asset_id for hit in hits if hit.duplicate_id != target_id)

        if asset_ids or source_ids:
            self._duplicates.merge(asset_ids=asset_ids, target_id=target_id, source_ids=source_ids)

        LOGGER.info(
            "duplicate_cluster_updated",
            extra={
                "asset_id": asset.id,
                "duplicate_id": target_id,
                "reassigned": len(asset_ids),
                "absorbed": source_ids,
            },
        )
        return [asset.id, *(asset_id for asset_id in asset_ids if asset_id != asset.id)]


__all__ = ["DuplicateService", "select_target_id"]
