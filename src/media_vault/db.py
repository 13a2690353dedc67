"""ORM schema for users, assets and their side tables, plus engine and session setup."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from media_vault.db_helpers import normalize_database_url
from media_vault.enums import AssetStatus, AssetVisibility
from utils.logging import get_logger

LOGGER = get_logger(__name__)

ASSET_CHECKSUM_CONSTRAINT = "uq_assets_owner_checksum"


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class User(Base):
    """Asset owner and storage quota ledger."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    quota_size_in_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    quota_usage_in_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)


class Asset(Base):
    """One uploaded media item and its grouping links."""

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    checksum: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    original_path: Mapped[str] = mapped_column(String, nullable=False)
    original_file_name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    visibility: Mapped[str] = mapped_column(String, nullable=False, default=AssetVisibility.TIMELINE.value)
    status: Mapped[str] = mapped_column(String, nullable=False, default=AssetStatus.ACTIVE.value)
    device_asset_id: Mapped[str | None] = mapped_column(String, nullable=True)
    device_id: Mapped[str | None] = mapped_column(String, nullable=True)
    file_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    file_modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    local_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration: Mapped[str | None] = mapped_column(String, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sidecar_path: Mapped[str | None] = mapped_column(String, nullable=True)
    stack_id: Mapped[str | None] = mapped_column(String, nullable=True)
    duplicate_id: Mapped[str | None] = mapped_column(String, nullable=True)
    live_photo_video_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
    deleted_at: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index(
            ASSET_CHECKSUM_CONSTRAINT,
            "owner_id",
            "checksum",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index("idx_assets_duplicate_id", "duplicate_id"),
        Index("idx_assets_owner_device", "owner_id", "device_id"),
        Index("idx_assets_live_photo_video_id", "live_photo_video_id"),
    )


class AssetExif(Base):
    """Extracted file metadata for an asset."""

    __tablename__ = "asset_exif"

    asset_id: Mapped[str] = mapped_column(String, ForeignKey("assets.id"), primary_key=True)
    file_size_in_byte: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    exif_image_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exif_image_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_time_original: Mapped[str | None] = mapped_column(String, nullable=True)
    make: Mapped[str | None] = mapped_column(String, nullable=True)
    model: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)


class AssetJobStatus(Base):
    """Per-asset bookkeeping for background jobs."""

    __tablename__ = "asset_job_status"

    asset_id: Mapped[str] = mapped_column(String, ForeignKey("assets.id"), primary_key=True)
    metadata_extracted_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    duplicates_detected_at: Mapped[float | None] = mapped_column(Float, nullable=True)


class SmartSearch(Base):
    """Embedding vector produced by the external model for an asset."""

    __tablename__ = "smart_search"

    asset_id: Mapped[str] = mapped_column(String, ForeignKey("assets.id"), primary_key=True)
    embedding: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    embedding_dim: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)


_ENGINES: dict[str, Engine] = {}
_ENGINES_LOCK = Lock()

_SQLITE_BUSY_TIMEOUT_SECONDS = 30.0


def _enable_sqlite_wal(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        # Upload requests and Celery workers write to the same file.
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout = {int(_SQLITE_BUSY_TIMEOUT_SECONDS * 1000)}")
        finally:
            cursor.close()


def _build_engine(url: str) -> Engine:
    sa_url = make_url(url)
    if sa_url.get_backend_name() != "sqlite":
        return create_engine(url, future=True, pool_pre_ping=True)

    database = sa_url.database
    if database and database != ":memory:":
        try:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.error("db_directory_unavailable", extra={"path": database, "error": str(exc)})
            raise

    engine = create_engine(url, future=True, connect_args={"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS})
    _enable_sqlite_wal(engine)
    return engine


def _create_schema(engine: Engine, url: str) -> None:
    try:
        Base.metadata.create_all(engine)
    except OperationalError as exc:
        # Workers starting together may race to create the same tables.
        if "already exists" not in str(exc).lower():
            raise
        LOGGER.info("db_schema_race_ignored", extra={"target": url})


def get_engine(target: str | Path) -> Engine:
    """Return the process-wide engine for ``target``, creating tables on first use."""

    url = normalize_database_url(target)
    with _ENGINES_LOCK:
        engine = _ENGINES.get(url)
        if engine is None:
            engine = _build_engine(url)
            _create_schema(engine, url)
            _ENGINES[url] = engine
            LOGGER.info("db_engine_ready", extra={"backend": engine.dialect.name})
    return engine


def open_primary_session(target: str | Path) -> Session:
    """Open a session on the asset database; use it as a context manager."""

    return Session(get_engine(target), future=True)


__all__ = [
    "ASSET_CHECKSUM_CONSTRAINT",
    "Base",
    "User",
    "Asset",
    "AssetExif",
    "AssetJobStatus",
    "SmartSearch",
    "get_engine",
    "open_primary_session",
]
