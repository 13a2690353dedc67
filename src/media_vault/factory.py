"""Construct services for one session from settings and collaborators."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.orm import Session

from media_vault.config import Settings
from media_vault.repositories import (
    AccessRepository,
    AssetRepository,
    DuplicateRepository,
    EventRepository,
    UserRepository,
)
from media_vault.repositories.job import JobQueue
from media_vault.services import AssetMediaService, DuplicateService, MetadataService
from media_vault.storage import StorageRepository


def build_storage(settings: Settings) -> StorageRepository:
    return StorageRepository(Path(settings.storage.media_root).expanduser().resolve())


def build_asset_media_service(
    session: Session,
    settings: Settings,
    jobs: JobQueue,
    events: EventRepository,
) -> AssetMediaService:
    return AssetMediaService(
        session=session,
        assets=AssetRepository(session),
        users=UserRepository(session),
        access=AccessRepository(session),
        storage=build_storage(settings),
        jobs=jobs,
        events=events,
        settings=settings,
    )


def build_duplicate_service(
    session: Session,
    settings: Settings,
    jobs: JobQueue,
    events: EventRepository,
) -> DuplicateService:
    return DuplicateService(
        session=session,
        assets=AssetRepository(session),
        duplicates=DuplicateRepository(session),
        access=AccessRepository(session),
        jobs=jobs,
        events=events,
        settings=settings,
    )


def build_metadata_service(session: Session, settings: Settings, events: EventRepository) -> MetadataService:
    return MetadataService(
        session=session,
        assets=AssetRepository(session),
        storage=build_storage(settings),
        events=events,
    )


__all__ = [
    "build_storage",
    "build_asset_media_service",
    "build_duplicate_service",
    "build_metadata_service",
]
