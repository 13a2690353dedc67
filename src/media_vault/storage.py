"""Filesystem content store for uploaded originals, sidecars, and profile images."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable

from media_vault.hasher import new_hasher
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "storage"})

_CHUNK_SIZE = 1 << 20


class StorageFolder(str, Enum):
    UPLOAD = "upload"
    PROFILE = "profile"


@dataclass(frozen=True)
class StoredBytes:
    """Outcome of a durable write: final path, byte count, and checksum."""

    path: Path
    size: int
    checksum: bytes


class StorageRepository:
    """Atomic writes and metadata operations below a single media root."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def folder(self, folder: StorageFolder, owner_id: str) -> Path:
        return self._root / folder.value / owner_id

    def nested_folder(self, folder: StorageFolder, owner_id: str, file_id: str) -> Path:
        """Shard files below ``<folder>/<owner>/<id[0:2]>/<id[2:4]>``."""

        return self.folder(folder, owner_id) / file_id[0:2] / file_id[2:4]

    def write(self, path: Path, source: BinaryIO | bytes) -> StoredBytes:
        """Persist ``source`` at ``path`` atomically, hashing while writing.

        Bytes land in a temporary file in the destination directory and are
        renamed into place only after an fsync, so a reader never observes a
        partially written original.
        """

        path.parent.mkdir(parents=True, exist_ok=True)
        hasher = new_hasher()
        size = 0

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in _iter_chunks(source):
                    hasher.update(chunk)
                    handle.write(chunk)
                    size += len(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        LOGGER.debug("storage_write", extra={"path": str(path), "size": size})
        return StoredBytes(path=path, size=size, checksum=hasher.digest())

    def stat(self, path: Path | str) -> int:
        return Path(path).stat().st_size

    def utimes(self, path: Path | str, access_time: datetime, modified_time: datetime) -> None:
        os.utime(Path(path), (access_time.timestamp(), modified_time.timestamp()))

    def unlink(self, paths: Iterable[Path | str | None]) -> int:
        """Remove files, ignoring ones that are already gone. Returns the number removed."""

        removed = 0
        for raw in paths:
            if not raw:
                continue
            path = Path(raw)
            try:
                path.unlink()
            except FileNotFoundError:
                LOGGER.debug("storage_unlink_missing", extra={"path": str(path)})
                continue
            removed += 1
        return removed


def _iter_chunks(source: BinaryIO | bytes) -> Iterable[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        for offset in range(0, len(data), _CHUNK_SIZE):
            yield data[offset : offset + _CHUNK_SIZE]
        return

    while True:
        chunk = source.read(_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


__all__ = ["StorageFolder", "StoredBytes", "StorageRepository"]
