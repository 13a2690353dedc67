"""Celery task wiring for metadata extraction, cleanup, and duplicate detection."""

from __future__ import annotations

from functools import lru_cache

from celery import Celery

from media_vault.config import Settings, load_settings
from media_vault.db import open_primary_session
from media_vault.enums import JobName, JobStatus
from media_vault.factory import build_duplicate_service, build_metadata_service, build_storage
from media_vault.repositories.event import EventRepository
from media_vault.repositories.job import JobRepository, job_routes
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "task_queue"})


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return load_settings()


def _init_celery() -> Celery:
    settings = _load_settings()
    routes = job_routes(settings.queues)
    app = Celery("media_vault")
    app.conf.update(
        broker_url=settings.queues.broker_url,
        result_backend=settings.queues.result_backend,
        worker_concurrency=settings.queues.default_concurrency,
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_default_queue=settings.queues.background_queue,
        task_routes={name.value: {"queue": queue} for name, queue in routes.items()},
    )
    return app


celery_app = _init_celery()


def job_repository() -> JobRepository:
    return JobRepository(celery_app, job_routes(_load_settings().queues))


@lru_cache(maxsize=1)
def _events() -> EventRepository:
    return EventRepository()


@celery_app.task(name=JobName.ASSET_EXTRACT_METADATA.value, acks_late=True)
def asset_extract_metadata(asset_id: str, source: str | None = None) -> str:
    """Refresh file size, dimensions, and EXIF fields for one asset."""

    settings = _load_settings()
    with open_primary_session(settings.databases.primary_url) as session:
        service = build_metadata_service(session, settings, _events())
        status = service.handle_metadata_extraction(asset_id, source=source)
    return status.value


@celery_app.task(name=JobName.FILE_DELETE.value, acks_late=True)
def file_delete(files: list[str]) -> str:
    """Remove orphaned upload bytes. Missing files count as already deleted."""

    storage = build_storage(_load_settings())
    removed = storage.unlink(files)
    LOGGER.info("file_delete_complete", extra={"requested": len(files), "removed": removed})
    return JobStatus.SUCCESS.value


@celery_app.task(name=JobName.ASSET_DETECT_DUPLICATES.value, acks_late=True)
def asset_detect_duplicates(asset_id: str) -> str:
    settings = _load_settings()
    with open_primary_session(settings.databases.primary_url) as session:
        service = build_duplicate_service(session, settings, job_repository(), _events())
        status = service.handle_search_duplicates(asset_id)
    LOGGER.info("duplicate_job_complete", extra={"asset_id": asset_id, "status": status.value})
    return status.value


@celery_app.task(name=JobName.ASSET_DETECT_DUPLICATES_QUEUE_ALL.value, acks_late=True)
def asset_detect_duplicates_queue_all(force: bool = False) -> str:
    settings = _load_settings()
    with open_primary_session(settings.databases.primary_url) as session:
        service = build_duplicate_service(session, settings, job_repository(), _events())
        status = service.handle_queue_search_duplicates(force=force)
    return status.value


@celery_app.task(name=JobName.ASSET_STORE_EMBEDDING.value, acks_late=True)
def asset_store_embedding(asset_id: str, embedding: list[float]) -> str:
    """Accept a vector from the embedding producer and schedule duplicate detection."""

    settings = _load_settings()
    with open_primary_session(settings.databases.primary_url) as session:
        service = build_duplicate_service(session, settings, job_repository(), _events())
        status = service.store_embedding(asset_id, embedding)
    return status.value


__all__ = [
    "celery_app",
    "job_repository",
    "asset_extract_metadata",
    "file_delete",
    "asset_detect_duplicates",
    "asset_detect_duplicates_queue_all",
    "asset_store_embedding",
]
