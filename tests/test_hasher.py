from __future__ import annotations

import base64

import pytest

from media_vault.errors import BadRequestError
from media_vault.hasher import CHECKSUM_SIZE, checksum_of_bytes, compute_checksum, from_checksum, to_hex


def test_file_and_bytes_checksums_agree(tmp_path) -> None:
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"x" * 5000)

    digest = compute_checksum(path, chunk_size=512)

    assert digest == checksum_of_bytes(b"x" * 5000)
    assert len(digest) == CHECKSUM_SIZE


def test_from_checksum_accepts_hex_and_base64() -> None:
    digest = checksum_of_bytes(b"content")

    assert from_checksum(to_hex(digest)) == digest
    assert from_checksum(to_hex(digest).upper()) == digest
    assert from_checksum(base64.b64encode(digest).decode()) == digest


@pytest.mark.parametrize("value", ["", "not-a-checksum", base64.b64encode(b"short").decode()])
def test_from_checksum_rejects_malformed_values(value: str) -> None:
    with pytest.raises(BadRequestError):
        from_checksum(value)
