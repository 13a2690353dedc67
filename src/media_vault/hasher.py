"""Content checksum helpers for uploaded media."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Final

import xxhash

from media_vault.errors import BadRequestError

CHECKSUM_ALGO: Final[str] = "xxh3-128"
CHECKSUM_SIZE: Final[int] = 16


def new_hasher() -> "xxhash.xxh3_128":
    """Return an incremental hasher matching :data:`CHECKSUM_ALGO`."""

    return xxhash.xxh3_128()


def compute_checksum(path: Path, chunk_size: int = 1 << 20) -> bytes:
    """Compute the binary content checksum for a file.

    Args:
        path: Path to the file whose content should be hashed.
        chunk_size: Size of the read buffer in bytes.

    Returns:
        The 16-byte ``xxh3_128`` digest of the file contents.
    """

    hasher = new_hasher()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.digest()


def checksum_of_bytes(data: bytes) -> bytes:
    hasher = new_hasher()
    hasher.update(data)
    return hasher.digest()


def from_checksum(value: str) -> bytes:
    """Decode a client-supplied checksum given as hex or base64.

    Raises:
        BadRequestError: When the value does not decode to a checksum digest.
    """

    text = value.strip()
    if len(text) == CHECKSUM_SIZE * 2:
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass

    try:
        decoded = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BadRequestError(f"Invalid checksum {value!r}") from exc

    if len(decoded) != CHECKSUM_SIZE:
        raise BadRequestError(f"Invalid checksum {value!r}")
    return decoded


def to_hex(checksum: bytes) -> str:
    return checksum.hex()


__all__ = [
    "CHECKSUM_ALGO",
    "CHECKSUM_SIZE",
    "new_hasher",
    "compute_checksum",
    "checksum_of_bytes",
    "from_checksum",
    "to_hex",
]
