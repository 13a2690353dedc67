from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import pytest

from media_vault.config import Settings
from media_vault.db import open_primary_session
from media_vault.dtos import AssetMediaCreateDto, UploadFile
from media_vault.enums import UploadFieldName
from media_vault.repositories import (
    AccessRepository,
    AssetRepository,
    DuplicateRepository,
    EventRepository,
    UserRepository,
)
from media_vault.repositories.job import JobItem
from media_vault.services import AssetMediaService, DuplicateService
from media_vault.storage import StorageRepository


class RecordingJobs:
    """In-memory stand-in for the Celery job repository."""

    def __init__(self) -> None:
        self.jobs: list[JobItem] = []
        self.batches: list[list[JobItem]] = []

    def queue(self, job: JobItem) -> None:
        self.jobs.append(job)

    def queue_all(self, jobs: Iterable[JobItem]) -> None:
        batch = list(jobs)
        self.batches.append(batch)
        self.jobs.extend(batch)

    def named(self, name) -> list[JobItem]:
        return [job for job in self.jobs if job.name == name]


class RecordingEvents(EventRepository):
    def __init__(self) -> None:
        super().__init__(handlers={})
        self.emitted: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.emitted.append((event, payload))


WHEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_dto(**overrides: Any) -> AssetMediaCreateDto:
    values: dict[str, Any] = {
        "device_asset_id": "device-asset-1",
        "device_id": "phone",
        "file_created_at": WHEN,
        "file_modified_at": WHEN,
    }
    values.update(overrides)
    return AssetMediaCreateDto(**values)


def make_file(data: bytes = b"jpeg-bytes", name: str = "IMG_0001.jpg", **overrides: Any) -> UploadFile:
    field_name = overrides.pop("field_name", UploadFieldName.ASSET_DATA)
    upload = UploadFile.from_bytes(field_name, name, data)
    for key, value in overrides.items():
        setattr(upload, key, value)
    return upload


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    settings = Settings()
    settings.databases.primary_url = f"sqlite:///{tmp_path / 'media_vault.db'}"
    settings.storage.media_root = str(tmp_path / "media")
    return settings


@pytest.fixture
def session(settings: Settings):
    with open_primary_session(settings.databases.primary_url) as session:
        yield session


@pytest.fixture
def storage(settings: Settings) -> StorageRepository:
    return StorageRepository(Path(settings.storage.media_root))


@pytest.fixture
def jobs() -> RecordingJobs:
    return RecordingJobs()


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def user(session):
    user = UserRepository(session).create(email="owner@example.com", name="Owner")
    session.commit()
    return user


@pytest.fixture
def media_service(session, settings, storage, jobs, events) -> AssetMediaService:
    return AssetMediaService(
        session=session,
        assets=AssetRepository(session),
        users=UserRepository(session),
        access=AccessRepository(session),
        storage=storage,
        jobs=jobs,
        events=events,
        settings=settings,
    )


@pytest.fixture
def duplicate_service(session, settings, jobs, events) -> DuplicateService:
    return DuplicateService(
        session=session,
        assets=AssetRepository(session),
        duplicates=DuplicateRepository(session),
        access=AccessRepository(session),
        jobs=jobs,
        events=events,
        settings=settings,
    )
