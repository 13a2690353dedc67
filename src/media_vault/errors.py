"""Exception types surfaced by the ingestion and duplicate services.

The HTTP layer maps ``status_code`` onto its responses; job handlers never
raise these across the job boundary.
"""

from __future__ import annotations


class MediaVaultError(Exception):
    """Base class for all service-level failures."""

    status_code: int = 500


class BadRequestError(MediaVaultError):
    status_code = 400


class ForbiddenError(MediaVaultError):
    status_code = 403


class NotFoundError(MediaVaultError):
    status_code = 404


class InternalServerError(MediaVaultError):
    status_code = 500


class DuplicateChecksumError(MediaVaultError):
    """A write collided with a live asset of the same owner and checksum."""

    status_code = 409

    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Checksum already belongs to asset {asset_id}")
        self.asset_id = asset_id


__all__ = [
    "MediaVaultError",
    "BadRequestError",
    "ForbiddenError",
    "NotFoundError",
    "InternalServerError",
    "DuplicateChecksumError",
]
