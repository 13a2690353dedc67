"""Persistence and side-effect adapters used by the services."""

from media_vault.repositories.access import AccessRepository
from media_vault.repositories.asset import AssetRepository, ConflictExisting, Created
from media_vault.repositories.duplicate import DuplicateRepository
from media_vault.repositories.event import EventRepository
from media_vault.repositories.job import JobItem, JobRepository
from media_vault.repositories.user import UserRepository

__all__ = [
    "AccessRepository",
    "AssetRepository",
    "ConflictExisting",
    "Created",
    "DuplicateRepository",
    "EventRepository",
    "JobItem",
    "JobRepository",
    "UserRepository",
]
