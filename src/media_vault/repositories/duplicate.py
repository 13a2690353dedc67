"""Duplicate index: nearest-neighbour search over embeddings and cluster writes."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from media_vault.db import Asset, SmartSearch
from media_vault.db_helpers import chunked, dialect_insert
from media_vault.enums import DUPLICATE_VISIBILITIES
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "duplicate_repository"})

_SEARCH_PARTITION = 1024


@dataclass(frozen=True)
class DuplicateSearchHit:
    asset_id: str
    distance: float
    duplicate_id: str | None


@dataclass(frozen=True)
class DuplicateGroup:
    duplicate_id: str
    asset_ids: list[str]


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    norms = np.where(norms == 0, 1.0, norms)
    return vectors / norms


class DuplicateRepository:
    """Cluster membership is the ``assets.duplicate_id`` column; embeddings live in ``smart_search``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def upsert_embedding(self, asset_id: str, embedding: Sequence[float] | np.ndarray) -> None:
        vector = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if vector.size == 0:
            raise ValueError("embedding cannot be empty")

        row = {
            "asset_id": asset_id,
            "embedding": vector.tobytes(),
            "embedding_dim": int(vector.size),
            "updated_at": time.time(),
        }
        insert_stmt = dialect_insert(self._session, SmartSearch).values(row)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[SmartSearch.asset_id],
            set_={
                "embedding": insert_stmt.excluded.embedding,
                "embedding_dim": insert_stmt.excluded.embedding_dim,
                "updated_at": insert_stmt.excluded.updated_at,
            },
        )
        self._session.execute(stmt)

    def search(
        self,
        *,
        asset_id: str,
        embedding: np.ndarray,
        max_distance: float,
        type: str,
        owner_ids: Sequence[str],
    ) -> list[DuplicateSearchHit]:
        """Return candidates within ``max_distance`` cosine distance of ``embedding``.

        Candidates share the asset type, belong to one of ``owner_ids``, are
        live, unstacked, and in a duplicate-eligible visibility. The subject
        itself is excluded. Hits are ordered by distance, then asset id.
        """

        query = _normalize(np.asarray(embedding, dtype=np.float64).reshape(-1))
        stmt = (
            select(Asset.id, Asset.duplicate_id, SmartSearch.embedding)
            .join(SmartSearch, SmartSearch.asset_id == Asset.id)
            .where(
                Asset.id != asset_id,
                Asset.owner_id.in_(list(owner_ids)),
                Asset.type == type,
                Asset.deleted_at.is_(None),
                Asset.stack_id.is_(None),
                Asset.visibility.in_([visibility.value for visibility in DUPLICATE_VISIBILITIES]),
                SmartSearch.embedding_dim == int(query.size),
            )
            .execution_options(yield_per=_SEARCH_PARTITION)
        )

        hits: list[DuplicateSearchHit] = []
        for partition in self._session.execute(stmt).partitions(_SEARCH_PARTITION):
            matrix = np.stack([np.frombuffer(row.embedding, dtype=np.float32) for row in partition])
            distances = 1.0 - _normalize(matrix.astype(np.float64)) @ query
            distances = np.clip(distances, 0.0, 2.0)
            for row, distance in zip(partition, distances):
                if distance <= max_distance:
                    hits.append(
                        DuplicateSearchHit(
                            asset_id=row.id,
                            distance=float(distance),
                            duplicate_id=row.duplicate_id,
                        )
                    )

        hits.sort(key=lambda hit: (hit.distance, hit.asset_id))
        return hits

    def merge(self, *, asset_ids: Sequence[str], target_id: str, source_ids: Sequence[str]) -> None:
        """Assign ``target_id`` to ``asset_ids`` and to every member of ``source_ids``.

        Rows are locked first on dialects that support it; the caller commits
        so both reassignments become visible together.
        """

        sources = [source for source in dict.fromkeys(source_ids) if source != target_id]
        ids = list(dict.fromkeys(asset_ids))
        if not ids and not sources:
            return

        lock_stmt = (
            select(Asset.id)
            .where(or_(Asset.id.in_(ids), Asset.duplicate_id.in_(sources)))
            .with_for_update()
        )
        self._session.execute(lock_stmt).all()

        now = time.time()
        for batch in chunked(ids):
            self._session.execute(
                update(Asset)
                .where(Asset.id.in_(batch))
                .values(duplicate_id=target_id, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        if sources:
            self._session.execute(
                update(Asset)
                .where(Asset.duplicate_id.in_(sources))
                .values(duplicate_id=target_id, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )

        LOGGER.info(
            "duplicate_merge",
            extra={"target_id": target_id, "asset_count": len(ids), "source_ids": sources},
        )

    def get_all(self, owner_ids: Sequence[str]) -> list[DuplicateGroup]:
        """Return clusters holding at least two live assets of the given owners."""

        stmt = (
            select(Asset.duplicate_id, Asset.id)
            .where(
                Asset.owner_id.in_(list(owner_ids)),
                Asset.duplicate_id.is_not(None),
                Asset.deleted_at.is_(None),
            )
            .order_by(Asset.duplicate_id, Asset.local_date_time, Asset.id)
        )

        groups: dict[str, list[str]] = {}
        for duplicate_id, asset_id in self._session.execute(stmt):
            groups.setdefault(duplicate_id, []).append(asset_id)

        return [
            DuplicateGroup(duplicate_id=duplicate_id, asset_ids=asset_ids)
            for duplicate_id, asset_ids in groups.items()
            if len(asset_ids) >= 2
        ]

    def dissolve_singletons(self, duplicate_ids: Sequence[str]) -> list[str]:
        """Clear clusters left with fewer than two live members.

        Returns the ids of the assets whose membership was cleared.
        """

        cleared: list[str] = []
        dissolved: list[str] = []
        for duplicate_id in dict.fromkeys(duplicate_ids):
            if duplicate_id is None:
                continue
            members = self._session.execute(
                select(Asset.id, Asset.deleted_at).where(Asset.duplicate_id == duplicate_id)
            ).all()
            if sum(1 for member in members if member.deleted_at is None) >= 2:
                continue
            self._session.execute(
                update(Asset)
                .where(Asset.duplicate_id == duplicate_id)
                .values(duplicate_id=None, updated_at=time.time())
                .execution_options(synchronize_session="fetch")
            )
            cleared.extend(member.id for member in members)
            dissolved.append(duplicate_id)

        if dissolved:
            LOGGER.info("duplicate_dissolved", extra={"duplicate_ids": dissolved, "asset_count": len(cleared)})
        return cleared

    def delete(self, owner_id: str, duplicate_ids: Sequence[str]) -> None:
        """Dismiss clusters by clearing the membership of every owned asset."""

        for batch in chunked(list(dict.fromkeys(duplicate_ids))):
            self._session.execute(
                update(Asset)
                .where(Asset.owner_id == owner_id, Asset.duplicate_id.in_(batch))
                .values(duplicate_id=None, updated_at=time.time())
                .execution_options(synchronize_session="fetch")
            )


__all__ = ["DuplicateRepository", "DuplicateSearchHit", "DuplicateGroup"]
