"""Ownership lookups backing permission checks."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from media_vault.db import Asset
from media_vault.db_helpers import chunked


class AccessRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def check_owner_access(self, user_id: str, asset_ids: Sequence[str]) -> set[str]:
        """Return the subset of ``asset_ids`` owned by ``user_id``."""

        allowed: set[str] = set()
        for batch in chunked(list(dict.fromkeys(asset_ids))):
            stmt = select(Asset.id).where(Asset.owner_id == user_id, Asset.id.in_(batch))
            allowed.update(self._session.execute(stmt).scalars())
        return allowed

    def check_duplicate_access(self, user_id: str, duplicate_ids: Sequence[str]) -> set[str]:
        """Return the subset of ``duplicate_ids`` that group assets of ``user_id``."""

        allowed: set[str] = set()
        for batch in chunked(list(dict.fromkeys(duplicate_ids))):
            stmt = (
                select(Asset.duplicate_id)
                .where(Asset.owner_id == user_id, Asset.duplicate_id.in_(batch))
                .distinct()
            )
            allowed.update(value for value in self._session.execute(stmt).scalars() if value is not None)
        return allowed


__all__ = ["AccessRepository"]
