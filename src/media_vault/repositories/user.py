"""Repository for users and their storage quota ledger."""

from __future__ import annotations

import time
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from media_vault.db import User
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "user_repository"})


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, user_id: str) -> User | None:
        return self._session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        return self._session.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def create(self, *, email: str, name: str = "", quota_size_in_bytes: int | None = None) -> User:
        now = time.time()
        user = User(
            id=str(uuid4()),
            email=email,
            name=name,
            quota_size_in_bytes=quota_size_in_bytes,
            quota_usage_in_bytes=0,
            created_at=now,
            updated_at=now,
        )
        self._session.add(user)
        self._session.flush()
        LOGGER.info("user_created", extra={"user_id": user.id})
        return user

    def update_usage(self, user_id: str, delta: int) -> None:
        """Add ``delta`` bytes to the usage counter as a single SQL increment.

        Concurrent uploads never lose updates because the new value is
        computed by the database rather than read-modify-written here.
        """

        if delta == 0:
            return
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                quota_usage_in_bytes=User.quota_usage_in_bytes + delta,
                updated_at=time.time(),
            )
            .execution_options(synchronize_session="fetch")
        )
        self._session.execute(stmt)


__all__ = ["UserRepository"]
