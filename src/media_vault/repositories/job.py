"""Background job dispatch over Celery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from celery import Celery

from media_vault.config import QueueConfig
from media_vault.enums import JobName
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "job_repository"})


@dataclass(frozen=True)
class JobItem:
    name: JobName
    data: dict[str, Any] = field(default_factory=dict)


class JobQueue(Protocol):
    def queue(self, job: JobItem) -> None: ...

    def queue_all(self, jobs: Iterable[JobItem]) -> None: ...


def job_routes(queues: QueueConfig) -> dict[JobName, str]:
    """Map every job onto its configured Celery queue."""

    return {
        JobName.ASSET_EXTRACT_METADATA: queues.metadata_queue,
        JobName.FILE_DELETE: queues.background_queue,
        JobName.ASSET_DETECT_DUPLICATES: queues.duplicate_queue,
        JobName.ASSET_DETECT_DUPLICATES_QUEUE_ALL: queues.duplicate_queue,
        JobName.ASSET_STORE_EMBEDDING: queues.duplicate_queue,
    }


class JobRepository:
    """Send jobs to workers by task name so producers never import task code."""

    def __init__(self, app: Celery, routes: Mapping[JobName, str]) -> None:
        self._app = app
        self._routes = dict(routes)

    def queue(self, job: JobItem) -> None:
        queue_name = self._routes.get(job.name)
        self._app.send_task(job.name.value, kwargs=job.data, queue=queue_name)
        LOGGER.debug("job_queued", extra={"job": job.name.value, "queue": queue_name})

    def queue_all(self, jobs: Iterable[JobItem]) -> None:
        count = 0
        for job in jobs:
            self.queue(job)
            count += 1
        if count:
            LOGGER.info("jobs_queued", extra={"count": count})


__all__ = ["JobItem", "JobQueue", "JobRepository", "job_routes"]
