"""Application services orchestrating repositories, storage, and jobs."""

from media_vault.services.asset_media import AssetMediaService
from media_vault.services.duplicate import DuplicateService
from media_vault.services.metadata import MetadataService

__all__ = ["AssetMediaService", "DuplicateService", "MetadataService"]
