"""Configuration loader and typed settings for the media vault."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DatabaseConfig:
    """Database connection target for the asset store."""

    primary_url: str = "sqlite:///data/media_vault.db"


@dataclass
class StorageConfig:
    """Filesystem layout for uploaded media."""

    media_root: str = "data/media"


@dataclass
class QueueConfig:
    """Celery worker and queue configuration."""

    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    metadata_queue: str = "metadata_extraction"
    duplicate_queue: str = "duplicate_detection"
    background_queue: str = "background_task"
    default_concurrency: int = 2
    backfill_batch_size: int = 1000


@dataclass
class DuplicateDetectionConfig:
    """Vector duplicate detection thresholds."""

    enabled: bool = True
    max_distance: float = 0.01


@dataclass
class MachineLearningConfig:
    """Feature switches for embedding-driven processing."""

    enabled: bool = True
    duplicate_detection: DuplicateDetectionConfig = field(default_factory=DuplicateDetectionConfig)


@dataclass
class UploadConfig:
    """Optional overrides for the accepted upload extensions.

    Empty lists keep the built-in tables in :mod:`media_vault.mime_types`.
    """

    asset_extensions: list[str] = field(default_factory=list)
    sidecar_extensions: list[str] = field(default_factory=list)
    profile_extensions: list[str] = field(default_factory=list)


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    queues: QueueConfig = field(default_factory=QueueConfig)
    machine_learning: MachineLearningConfig = field(default_factory=MachineLearningConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)

    def is_duplicate_detection_enabled(self) -> bool:
        ml = self.machine_learning
        return ml.enabled and ml.duplicate_detection.enabled


_SETTINGS_ENV = "MEDIA_VAULT_SETTINGS"
_SETTINGS_RELATIVE = Path("config") / "settings.yaml"


def _settings_file(explicit: Path | str | None) -> Path:
    """Pick the YAML file: explicit argument, then the env override, then cwd or repo ``config/``."""

    override = explicit or os.getenv(_SETTINGS_ENV)
    if override:
        return Path(override).expanduser().resolve()

    repo_root = Path(__file__).resolve().parents[2]
    search = [Path.cwd() / _SETTINGS_RELATIVE, repo_root / _SETTINGS_RELATIVE]
    return next((candidate for candidate in search if candidate.is_file()), search[0])


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _as_str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item).strip().lower() for item in value if str(item).strip()]


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Read settings YAML over the dataclass defaults.

    A missing or non-mapping file yields plain defaults; keys holding a value
    of the wrong type keep their default instead of failing the worker.
    """

    path = _settings_file(settings_path)
    settings = Settings()

    if not path.is_file():
        return settings

    with path.open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}

    if not isinstance(raw, dict):
        return settings

    databases_raw = _as_dict(raw.get("databases"))
    if isinstance(databases_raw.get("primary_url"), str):
        settings.databases.primary_url = databases_raw["primary_url"]

    storage_raw = _as_dict(raw.get("storage"))
    if isinstance(storage_raw.get("media_root"), str):
        settings.storage.media_root = storage_raw["media_root"]

    queue_raw = _as_dict(raw.get("queues"))
    queue_cfg = settings.queues
    for key in ("broker_url", "result_backend", "metadata_queue", "duplicate_queue", "background_queue"):
        if isinstance(queue_raw.get(key), str):
            setattr(queue_cfg, key, queue_raw[key])
    if isinstance(queue_raw.get("default_concurrency"), int):
        queue_cfg.default_concurrency = queue_raw["default_concurrency"]
    if isinstance(queue_raw.get("backfill_batch_size"), int) and queue_raw["backfill_batch_size"] > 0:
        queue_cfg.backfill_batch_size = queue_raw["backfill_batch_size"]

    ml_raw = _as_dict(raw.get("machine_learning"))
    ml_cfg = settings.machine_learning
    if isinstance(ml_raw.get("enabled"), bool):
        ml_cfg.enabled = ml_raw["enabled"]

    duplicate_raw = _as_dict(ml_raw.get("duplicate_detection"))
    if isinstance(duplicate_raw.get("enabled"), bool):
        ml_cfg.duplicate_detection.enabled = duplicate_raw["enabled"]
    max_distance = duplicate_raw.get("max_distance")
    if isinstance(max_distance, (int, float)) and not isinstance(max_distance, bool) and max_distance > 0:
        ml_cfg.duplicate_detection.max_distance = float(max_distance)

    upload_raw = _as_dict(raw.get("upload"))
    upload_cfg = settings.upload
    for key in ("asset_extensions", "sidecar_extensions", "profile_extensions"):
        parsed = _as_str_list(upload_raw.get(key))
        if parsed is not None:
            setattr(upload_cfg, key, parsed)

    return settings


__all__ = [
    "DatabaseConfig",
    "StorageConfig",
    "QueueConfig",
    "DuplicateDetectionConfig",
    "MachineLearningConfig",
    "UploadConfig",
    "Settings",
    "load_settings",
]
